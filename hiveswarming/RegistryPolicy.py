# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module implements a converter between a tree of keys and the policy (.pol, PReg) format.
# A policy file is a flat list of entries, each carrying the full path of a key and a single value:
#   [key path;value name;type;size;data]
# Brackets and semicolons are UTF-16LE characters, strings are null-terminated UTF-16LE strings,
# the type and the size are 32-bit little-endian integers.

import logging

from . import RegistryRecords
from .RegistryHelpers import (RegistryException, MalformedPreambleException, UnterminatedTokenException, TruncatedPayloadException,
	ValueTooLargeException, ReadHead, PackUInt32, UnpackUInt32, EncodeUnicode, DecodeUnicode, UINT32_MAX)

logger = logging.getLogger(__name__)

POL_SIGNATURE = b'PReg'
POL_VERSION = 1

ENTRY_OPENING = EncodeUnicode('[')
ENTRY_SEPARATOR = EncodeUnicode(';')
ENTRY_CLOSING = EncodeUnicode(']')
NULL_CHARACTER = EncodeUnicode('\x00')

PATH_SEPARATOR = RegistryRecords.PATH_SEPARATOR

DEFAULT_ROOT_NAME = RegistryRecords.DEFAULT_ROOT_NAME

def RenderEntry(KeyPath, Value):
	"""Render a single entry for a value (a RegistryValue object) of a key, return it (as raw bytes)."""

	if len(Value.data) > UINT32_MAX:
		raise ValueTooLargeException('Value data is too long: {} bytes'.format(len(Value.data)))

	return b''.join([
		ENTRY_OPENING,
		EncodeUnicode(KeyPath + '\x00'),
		ENTRY_SEPARATOR,
		EncodeUnicode(Value.name + '\x00'),
		ENTRY_SEPARATOR,
		PackUInt32(Value.type),
		ENTRY_SEPARATOR,
		PackUInt32(len(Value.data)),
		ENTRY_SEPARATOR,
		Value.data,
		ENTRY_CLOSING
	])

def TreeToPolFile(Key):
	"""Render all descendants of a key (the key itself is not included) in the .pol format, return the file contents (as raw bytes).
	A key without values is written as an entry with an empty value name, the REG_NONE type and no data.
	"""

	parts = [ POL_SIGNATURE, PackUInt32(POL_VERSION) ]
	entries_count = 0

	stack = [ (None, subkey) for subkey in reversed(Key.subkeys) ]
	while len(stack) > 0:
		parent_path, key = stack.pop()

		if parent_path is None:
			key_path = key.name
		else:
			key_path = parent_path + PATH_SEPARATOR + key.name

		values = key.values
		if len(values) == 0:
			values = [ RegistryRecords.RegistryValue('', RegistryRecords.REG_NONE, b'') ]

		for value in values:
			try:
				parts.append(RenderEntry(key_path, value))
			except RegistryException as e:
				e.add_context('{} : "{}"'.format(key_path, value.name))
				raise

			entries_count += 1

		for subkey in reversed(key.subkeys):
			stack.append((key_path, subkey))

	logger.debug('Rendered %d entries in the .pol format', entries_count)

	return b''.join(parts)

def ReadNullTerminatedString(Head, What):
	"""Read a null-terminated UTF-16LE string followed by a semicolon, return it without the null character."""

	separator_pos = Head.find_aligned(ENTRY_SEPARATOR, 2)
	if separator_pos == -1:
		raise UnterminatedTokenException('{} separator not found'.format(What))

	buf = Head.read(separator_pos)
	Head.advance(len(ENTRY_SEPARATOR))

	if len(buf) == 0 or not buf.endswith(NULL_CHARACTER):
		raise UnterminatedTokenException('{} not null-terminated'.format(What))

	return DecodeUnicode(buf[ : -len(NULL_CHARACTER)])

def ReadEntry(Head):
	"""Read a single entry, return a tuple (key_path, RegistryValue object).
	The value is None if the entry only states that the key exists.
	"""

	if not Head.expect(ENTRY_OPENING):
		raise UnterminatedTokenException('Entry does not start with opening bracket')

	key_path = ReadNullTerminatedString(Head, 'Key name')

	try:
		value_name = ReadNullTerminatedString(Head, 'Value name')

		try:
			value_type = UnpackUInt32(Head.read(4))
			if not Head.expect(ENTRY_SEPARATOR):
				raise UnterminatedTokenException('Value type not followed by a semicolon')

			value_size = UnpackUInt32(Head.read(4))
			if not Head.expect(ENTRY_SEPARATOR):
				raise UnterminatedTokenException('Value size not followed by a semicolon')

			if Head.remaining() < value_size:
				raise TruncatedPayloadException('End of data before end of value data (expected: {} bytes, available: {} bytes)'.format(value_size, Head.remaining()))

			data = Head.read(value_size)
			if not Head.expect(ENTRY_CLOSING):
				raise UnterminatedTokenException('Value data not followed by a closing bracket')
		except RegistryException as e:
			e.add_context('{} : "{}"'.format(key_path, value_name))
			raise
	except RegistryException as e:
		e.add_context(key_path)
		raise

	if len(value_name) == 0 and value_type == RegistryRecords.REG_NONE and value_size == 0:
		return (key_path, None)

	return (key_path, RegistryRecords.RegistryValue(value_name, value_type, data))

def PolFileToTree(Buffer, RootName = DEFAULT_ROOT_NAME):
	"""Parse the contents of a .pol file (as raw bytes), return a root key (a RegistryKey object) named 'RootName'.
	The format has no nesting: each subkey of the root key is named after the full path of its entries.
	Adjacent entries with the same path are merged into a single subkey; entries with the same path separated
	by other entries produce distinct subkeys.
	"""

	head = ReadHead(Buffer)

	if not head.expect(POL_SIGNATURE):
		raise MalformedPreambleException('PReg signature not found')

	if not head.expect(PackUInt32(POL_VERSION)):
		raise MalformedPreambleException('PReg version not found (expected: {})'.format(POL_VERSION))

	root = RegistryRecords.RegistryKey(RootName)
	entries_count = 0

	while not head.is_empty():
		key_path, value = ReadEntry(head)
		entries_count += 1

		if len(root.subkeys) == 0 or root.subkeys[-1].name != key_path:
			root.subkeys.append(RegistryRecords.RegistryKey(key_path))

		if value is not None:
			root.subkeys[-1].values.append(value)

	logger.debug('Parsed %d entries in the .pol format, %d keys', entries_count, len(root.subkeys))

	return root
