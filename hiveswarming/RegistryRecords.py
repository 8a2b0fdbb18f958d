# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module implements the in-memory tree of registry keys and values exchanged by all converters.

# Data types for a key value.
REG_NONE                       = 0x00000000
REG_SZ                         = 0x00000001
REG_EXPAND_SZ                  = 0x00000002
REG_BINARY                     = 0x00000003
REG_DWORD                      = 0x00000004
REG_DWORD_LITTLE_ENDIAN        = REG_DWORD
REG_DWORD_BIG_ENDIAN           = 0x00000005
REG_LINK                       = 0x00000006
REG_MULTI_SZ                   = 0x00000007
REG_RESOURCE_LIST              = 0x00000008
REG_FULL_RESOURCE_DESCRIPTOR   = 0x00000009
REG_RESOURCE_REQUIREMENTS_LIST = 0x0000000a
REG_QWORD                      = 0x0000000b
REG_QWORD_LITTLE_ENDIAN        = REG_QWORD

ValueTypes = {
REG_NONE: 'REG_NONE',
REG_SZ: 'REG_SZ',
REG_EXPAND_SZ: 'REG_EXPAND_SZ',
REG_BINARY: 'REG_BINARY',
REG_DWORD: 'REG_DWORD',
REG_DWORD_BIG_ENDIAN: 'REG_DWORD_BIG_ENDIAN',
REG_LINK: 'REG_LINK',
REG_MULTI_SZ: 'REG_MULTI_SZ',
REG_RESOURCE_LIST: 'REG_RESOURCE_LIST',
REG_FULL_RESOURCE_DESCRIPTOR: 'REG_FULL_RESOURCE_DESCRIPTOR',
REG_RESOURCE_REQUIREMENTS_LIST: 'REG_RESOURCE_REQUIREMENTS_LIST',
REG_QWORD: 'REG_QWORD'
}

PATH_SEPARATOR = '\\'

DEFAULT_ROOT_NAME = '(HiveRoot)' # A name for the root key when a format does not store it (hive and .pol files).

SYMBOLIC_LINK_VALUE_NAME = 'SymbolicLinkValue' # A value with this name and the REG_LINK type holds the destination of a symbolic link.

def TypeToString(ValueType):
	"""Return the name of a value type (for example, 'REG_SZ'), or its hexadecimal representation when unknown."""

	if ValueType in ValueTypes.keys():
		return ValueTypes[ValueType]

	return hex(ValueType)

class RegistryValue(object):
	"""This is a class for a registry value: a name, a numeric type and raw data."""

	name = None
	"""A value name (an empty string for the default value)."""

	type = None
	"""A value type (an unsigned 32-bit integer)."""

	data = None
	"""Raw data (bytes), kept intact whatever the type is."""

	def __init__(self, name = '', type = REG_NONE, data = b''):
		self.name = name
		self.type = type
		self.data = bytes(data)

	def __eq__(self, other):
		if not isinstance(other, RegistryValue):
			return NotImplemented

		return self.name == other.name and self.type == other.type and self.data == other.data

	def __ne__(self, other):
		result = self.__eq__(other)
		if result is NotImplemented:
			return result

		return not result

	__hash__ = None

	def __repr__(self):
		return 'RegistryValue({!r}, {}, {!r})'.format(self.name, TypeToString(self.type), self.data)

	def __str__(self):
		return 'RegistryValue, name: {}, type: {}, data size: {}'.format(self.name, TypeToString(self.type), len(self.data))

class RegistryKey(object):
	"""This is a class for a registry key: a name, ordered subkeys and ordered values."""

	name = None
	"""A key name (any character except the path separator)."""

	subkeys = None
	"""A list of RegistryKey objects (file order is kept)."""

	values = None
	"""A list of RegistryValue objects (file order is kept)."""

	def __init__(self, name = '', subkeys = None, values = None):
		self.name = name
		self.subkeys = list(subkeys) if subkeys is not None else []
		self.values = list(values) if values is not None else []

	def subkey(self, name):
		"""Return a subkey by its name (a RegistryKey object) or None, if not found."""

		name = name.upper()
		for curr_subkey in self.subkeys:
			if curr_subkey.name.upper() == name:
				return curr_subkey

	def value(self, name = ''):
		"""Return a value by its name (a RegistryValue object) or None, if not found.
		When 'name' is empty, a default value is returned (if any).
		"""

		name = name.upper()
		for curr_value in self.values:
			if curr_value.name.upper() == name:
				return curr_value

	def walk(self, path = None):
		"""This method yields (path, RegistryKey) tuples for this key and all its descendants, in pre-order.
		When 'path' is None, the name of this key is used as the path of this key.
		"""

		if path is None:
			path = self.name

		stack = [ (path, self) ]
		while len(stack) > 0:
			curr_path, curr_key = stack.pop()
			yield (curr_path, curr_key)

			for subkey in reversed(curr_key.subkeys):
				stack.append((curr_path + PATH_SEPARATOR + subkey.name, subkey))

	def __eq__(self, other):
		if not isinstance(other, RegistryKey):
			return NotImplemented

		# Compare iteratively, trees may be deep.
		pairs = [ (self, other) ]
		while len(pairs) > 0:
			a, b = pairs.pop()
			if a.name != b.name or a.values != b.values or len(a.subkeys) != len(b.subkeys):
				return False

			pairs.extend(zip(a.subkeys, b.subkeys))

		return True

	def __ne__(self, other):
		result = self.__eq__(other)
		if result is NotImplemented:
			return result

		return not result

	__hash__ = None

	def __repr__(self):
		return 'RegistryKey({!r}, subkeys: {}, values: {})'.format(self.name, len(self.subkeys), len(self.values))

	def __str__(self):
		return 'RegistryKey, name: {}, subkeys: {}, values: {}'.format(self.name, len(self.subkeys), len(self.values))

def IsSymbolicLink(Key):
	"""Check if a key follows the symbolic link convention: a single REG_LINK value named 'SymbolicLinkValue' and no subkeys."""

	if len(Key.subkeys) != 0 or len(Key.values) != 1:
		return False

	value = Key.values[0]
	return value.type == REG_LINK and value.name == SYMBOLIC_LINK_VALUE_NAME
