# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module implements an interface to read and write registry hive files using the registry API of a running system.
# Hive files are loaded as application hives, so no privilege is required. Windows only.
# The API is bound explicitly (see the WindowsRegistryApi class), this module can be imported on any system.

import ctypes
import logging
import os

from . import RegistryRecords
from .RegistryHelpers import RegistryException, IoFailureException, ValueTooLargeException, UINT32_MAX

logger = logging.getLogger(__name__)

DEFAULT_ROOT_NAME = RegistryRecords.DEFAULT_ROOT_NAME
LOG_FILE_EXTENSIONS = ('.LOG1', '.LOG2')

# Definitions: constants
_KEY_READ = 0x20019
_KEY_ALL_ACCESS = 0xF003F
_REG_PROCESS_APPKEY = 0x1
_REG_OPTION_NON_VOLATILE = 0x0
_REG_OPTION_CREATE_LINK = 0x2
_REG_OPTION_OPEN_LINK = 0x8
_ERROR_SUCCESS = 0

class WindowsRegistryApi(object):
	"""This class provides access to the registry routines (advapi32.dll) required to read and write application hives.
	Handles are opaque objects; all methods raise OSError on failure.
	"""

	def __init__(self):
		self._advapi32 = None

	def setup(self):
		"""Bind the registry routines. This method must be called before any other one."""

		if not hasattr(ctypes, 'windll'):
			raise OSError('The registry API is available on Windows only')

		advapi32 = ctypes.windll.advapi32
		if not hasattr(advapi32, 'RegLoadAppKeyW'):
			raise OSError('Application hives are not supported on this system')

		advapi32.RegLoadAppKeyW.restype = ctypes.c_int32
		advapi32.RegLoadAppKeyW.argtypes = [ ctypes.c_wchar_p, ctypes.c_void_p, ctypes.c_uint32, ctypes.c_uint32, ctypes.c_uint32 ]

		advapi32.RegQueryInfoKeyW.restype = ctypes.c_int32
		advapi32.RegQueryInfoKeyW.argtypes = [ ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p,
			ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p ]

		advapi32.RegEnumValueW.restype = ctypes.c_int32
		advapi32.RegEnumValueW.argtypes = [ ctypes.c_void_p, ctypes.c_uint32, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p,
			ctypes.c_void_p, ctypes.c_void_p ]

		advapi32.RegEnumKeyExW.restype = ctypes.c_int32
		advapi32.RegEnumKeyExW.argtypes = [ ctypes.c_void_p, ctypes.c_uint32, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p,
			ctypes.c_void_p, ctypes.c_void_p ]

		advapi32.RegOpenKeyExW.restype = ctypes.c_int32
		advapi32.RegOpenKeyExW.argtypes = [ ctypes.c_void_p, ctypes.c_wchar_p, ctypes.c_uint32, ctypes.c_uint32, ctypes.c_void_p ]

		advapi32.RegCreateKeyExW.restype = ctypes.c_int32
		advapi32.RegCreateKeyExW.argtypes = [ ctypes.c_void_p, ctypes.c_wchar_p, ctypes.c_uint32, ctypes.c_void_p, ctypes.c_uint32, ctypes.c_uint32,
			ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p ]

		advapi32.RegSetValueExW.restype = ctypes.c_int32
		advapi32.RegSetValueExW.argtypes = [ ctypes.c_void_p, ctypes.c_wchar_p, ctypes.c_uint32, ctypes.c_uint32, ctypes.c_void_p, ctypes.c_uint32 ]

		advapi32.RegCloseKey.restype = ctypes.c_int32
		advapi32.RegCloseKey.argtypes = [ ctypes.c_void_p ]

		self._advapi32 = advapi32

	def _check(self, Result, RoutineName):
		if Result != _ERROR_SUCCESS:
			raise OSError('The {}() routine failed with this status: {}'.format(RoutineName, Result))

	def load_app_key(self, HivePath, Writable = False):
		"""Load an application hive (a new one is created if the file does not exist), return a handle to its root key."""

		if Writable:
			access_rights = _KEY_ALL_ACCESS
		else:
			access_rights = _KEY_READ

		handle = ctypes.c_void_p()
		result = self._advapi32.RegLoadAppKeyW(HivePath, ctypes.byref(handle), access_rights, _REG_PROCESS_APPKEY, 0)
		self._check(result, 'RegLoadAppKeyW')

		return handle

	def _query_info(self, Handle):
		"""Return a tuple (subkeys_count, max_subkey_name_length, values_count, max_value_name_length, max_value_data_length)."""

		subkeys_count = ctypes.c_uint32()
		max_subkey_name_length = ctypes.c_uint32()
		values_count = ctypes.c_uint32()
		max_value_name_length = ctypes.c_uint32()
		max_value_data_length = ctypes.c_uint32()

		result = self._advapi32.RegQueryInfoKeyW(Handle, None, None, None, ctypes.byref(subkeys_count), ctypes.byref(max_subkey_name_length),
			None, ctypes.byref(values_count), ctypes.byref(max_value_name_length), ctypes.byref(max_value_data_length), None, None)
		self._check(result, 'RegQueryInfoKeyW')

		return (subkeys_count.value, max_subkey_name_length.value, values_count.value, max_value_name_length.value, max_value_data_length.value)

	def enum_values(self, Handle):
		"""Return a list of tuples (name, type, data) for all values of a key, in the order of the hive."""

		_, _, values_count, max_name_length, max_data_length = self._query_info(Handle)

		name_buffer = ctypes.create_unicode_buffer(max_name_length + 1)
		data_buffer = ctypes.create_string_buffer(max_data_length + 1)

		values = []
		for i in range(values_count):
			name_length = ctypes.c_uint32(max_name_length + 1)
			value_type = ctypes.c_uint32()
			data_length = ctypes.c_uint32(max_data_length + 1)

			result = self._advapi32.RegEnumValueW(Handle, i, name_buffer, ctypes.byref(name_length), None, ctypes.byref(value_type),
				data_buffer, ctypes.byref(data_length))
			self._check(result, 'RegEnumValueW')

			# Names may contain null characters, take the length reported.
			name = ctypes.wstring_at(name_buffer, name_length.value)
			values.append((name, value_type.value, data_buffer.raw[ : data_length.value]))

		return values

	def enum_subkey_names(self, Handle):
		"""Return a list of names for all subkeys of a key, in the order of the hive."""

		subkeys_count, max_name_length, _, _, _ = self._query_info(Handle)

		name_buffer = ctypes.create_unicode_buffer(max_name_length + 1)

		names = []
		for i in range(subkeys_count):
			name_length = ctypes.c_uint32(max_name_length + 1)

			result = self._advapi32.RegEnumKeyExW(Handle, i, name_buffer, ctypes.byref(name_length), None, None, None, None)
			self._check(result, 'RegEnumKeyExW')

			names.append(ctypes.wstring_at(name_buffer, name_length.value))

		return names

	def open_subkey(self, Handle, Name):
		"""Open a subkey for reading, return a handle to it. A symbolic link is opened as is (not followed)."""

		handle = ctypes.c_void_p()
		result = self._advapi32.RegOpenKeyExW(Handle, Name, _REG_OPTION_OPEN_LINK, _KEY_READ, ctypes.byref(handle))
		if result != _ERROR_SUCCESS:
			result = self._advapi32.RegOpenKeyExW(Handle, Name, 0, _KEY_READ, ctypes.byref(handle))

		self._check(result, 'RegOpenKeyExW')

		return handle

	def create_subkey(self, Handle, Name, Link = False):
		"""Create a subkey (or a symbolic link, if 'Link' is True), return a handle to it."""

		options = _REG_OPTION_NON_VOLATILE
		if Link:
			options |= _REG_OPTION_CREATE_LINK

		handle = ctypes.c_void_p()
		result = self._advapi32.RegCreateKeyExW(Handle, Name, 0, None, options, _KEY_ALL_ACCESS, None, ctypes.byref(handle), None)
		self._check(result, 'RegCreateKeyExW')

		return handle

	def set_value(self, Handle, Name, Type, Data):
		buffer = ctypes.create_string_buffer(Data, len(Data))
		result = self._advapi32.RegSetValueExW(Handle, Name, 0, Type, buffer, len(Data))
		self._check(result, 'RegSetValueExW')

	def close_key(self, Handle):
		self._advapi32.RegCloseKey(Handle)

def DeleteHiveLogFiles(HivePath):
	"""Delete transaction log files created by the registry next to a hive file (if any)."""

	for extension in LOG_FILE_EXTENSIONS:
		log_path = HivePath + extension
		try:
			os.remove(log_path)
		except FileNotFoundError:
			pass
		except OSError as e:
			logger.warning('Cannot delete a transaction log file: %s (%s)', log_path, e)
		else:
			logger.debug('Deleted a transaction log file: %s', log_path)

def LoadHiveAsTree(HivePath, RootName = DEFAULT_ROOT_NAME, Api = None):
	"""Load a hive file, return its root key (a RegistryKey object) named 'RootName' with all descendants.
	'Api' is a WindowsRegistryApi object (or an object providing the same methods), a new one is set up when it is None.
	"""

	if Api is None:
		Api = WindowsRegistryApi()
		try:
			Api.setup()
		except OSError as e:
			raise IoFailureException('Cannot use the registry API: {}'.format(e), HivePath)

	try:
		root_handle = Api.load_app_key(HivePath, False)
	except OSError as e:
		raise IoFailureException('Cannot load hive: {}'.format(e), HivePath)

	root = RegistryRecords.RegistryKey(RootName)
	keys_count = 0

	# Each item holds a path (for error reporting), a handle, and a key to fill.
	stack = [ (RootName, root_handle, root) ]
	try:
		while len(stack) > 0:
			key_path, handle, key = stack.pop()

			try:
				for name, value_type, data in Api.enum_values(handle):
					key.values.append(RegistryRecords.RegistryValue(name, value_type, data))

				subkey_names = Api.enum_subkey_names(handle)

				opened = []
				try:
					for name in subkey_names:
						opened.append((key_path + RegistryRecords.PATH_SEPARATOR + name, Api.open_subkey(handle, name), RegistryRecords.RegistryKey(name)))
				except OSError:
					for _, subkey_handle, _ in opened:
						Api.close_key(subkey_handle)

					raise
			except OSError as e:
				raise IoFailureException('Cannot read key: {}'.format(e), key_path)
			finally:
				Api.close_key(handle)

			for _, _, subkey in opened:
				key.subkeys.append(subkey)

			stack.extend(reversed(opened))
			keys_count += 1
	except RegistryException:
		for _, handle, _ in stack:
			Api.close_key(handle)

		raise
	finally:
		DeleteHiveLogFiles(HivePath)

	logger.debug('Loaded %d keys from hive: %s', keys_count, HivePath)

	return root

def WriteTreeAsHive(Key, HivePath, Api = None):
	"""Create a hive file (an existing file is replaced) holding the values and all descendants of a key.
	The name of the key itself is not stored. A key holding a single REG_LINK value named 'SymbolicLinkValue' (and no subkeys)
	is created as a symbolic link.
	'Api' is a WindowsRegistryApi object (or an object providing the same methods), a new one is set up when it is None.
	"""

	if Api is None:
		Api = WindowsRegistryApi()
		try:
			Api.setup()
		except OSError as e:
			raise IoFailureException('Cannot use the registry API: {}'.format(e), HivePath)

	try:
		os.remove(HivePath)
	except FileNotFoundError:
		pass
	except OSError as e:
		raise IoFailureException('Cannot delete hive file: {}'.format(e), HivePath)

	try:
		root_handle = Api.load_app_key(HivePath, True)
	except OSError as e:
		raise IoFailureException('Cannot create hive: {}'.format(e), HivePath)

	keys_count = 0

	stack = [ (Key.name, root_handle, Key) ]
	try:
		while len(stack) > 0:
			key_path, handle, key = stack.pop()

			try:
				for value in key.values:
					if len(value.data) > UINT32_MAX:
						raise ValueTooLargeException('Value data is too long: {} bytes'.format(len(value.data)), '{} : "{}"'.format(key_path, value.name))

					try:
						Api.set_value(handle, value.name, value.type, value.data)
					except OSError as e:
						raise IoFailureException('Cannot set value: {}'.format(e), '{} : "{}"'.format(key_path, value.name))

				created = []
				try:
					for subkey in key.subkeys:
						subkey_path = key_path + RegistryRecords.PATH_SEPARATOR + subkey.name
						subkey_handle = Api.create_subkey(handle, subkey.name, RegistryRecords.IsSymbolicLink(subkey))
						created.append((subkey_path, subkey_handle, subkey))
				except OSError as e:
					for _, subkey_handle, _ in created:
						Api.close_key(subkey_handle)

					raise IoFailureException('Cannot create subkey: {}'.format(e), subkey_path)
			finally:
				Api.close_key(handle)

			stack.extend(reversed(created))
			keys_count += 1
	except RegistryException:
		for _, handle, _ in stack:
			Api.close_key(handle)

		raise
	finally:
		DeleteHiveLogFiles(HivePath)

	logger.debug('Wrote %d keys to hive: %s', keys_count, HivePath)
