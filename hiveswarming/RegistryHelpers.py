# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module contains various helper functions: exceptions, a read cursor, integer and text codecs, file I/O.

import os
import tempfile
from struct import pack, unpack

UINT32_MAX = 0xFFFFFFFF
UINT64_MAX = 0xFFFFFFFFFFFFFFFF

HEX_DIGITS = frozenset('0123456789abcdefABCDEF')

DEFAULT_FILE_MODE = 0o666 # Before the umask is applied, as open() does.

class RegistryException(Exception):
	"""This is a top-level exception for this package.
	The 'path' attribute holds the key path (and the value name, if any) being processed when the error occurred.
	"""

	def __init__(self, value, path = None):
		self._value = value
		self.path = path

	def add_context(self, path):
		"""Record the key path being processed, unless a more specific one is already recorded."""

		if self.path is None:
			self.path = path

		return self

	def __str__(self):
		if self.path is None:
			return repr(self._value)

		return '{} (at: {})'.format(repr(self._value), self.path)

class MalformedPreambleException(RegistryException):
	"""This exception is raised when a file does not start with the expected preamble (header)."""

	pass

class UnterminatedTokenException(RegistryException):
	"""This exception is raised when an expected delimiter (a quote, a bracket, a colon, a separator) is missing."""

	pass

class InvalidDigitSequenceException(RegistryException):
	"""This exception is raised when hexadecimal digits are malformed."""

	pass

class TruncatedPayloadException(RegistryException):
	"""This exception is raised when data ends before a declared or expected length."""

	pass

class MissingRootKeyException(RegistryException):
	"""This exception is raised when a .reg file contains no key at all."""

	pass

class MultipleRootKeysException(RegistryException):
	"""This exception is raised when a .reg file contains more than one top-level key."""

	pass

class TrailingDataException(RegistryException):
	"""This exception is raised when input data is not fully consumed."""

	pass

class ValueTooLargeException(RegistryException):
	"""This exception is raised when a number or a length does not fit into its on-disk field."""

	pass

class IoFailureException(RegistryException):
	"""This exception is raised when a file or a hive cannot be opened, read or written."""

	pass

class ReadHead(object):
	"""This is a read cursor over an immutable sequence (a string or a bytes object).
	Nothing is consumed when an expectation is not met.
	"""

	def __init__(self, buf, pos = 0):
		self.buf = buf
		self.pos = pos

	def remaining(self):
		"""Return the number of elements not consumed yet."""

		return len(self.buf) - self.pos

	def is_empty(self):
		return self.pos >= len(self.buf)

	def peek(self, length = 1):
		"""Return up to 'length' next elements without consuming them."""

		return self.buf[self.pos : self.pos + length]

	def expect(self, token):
		"""Consume 'token' if the unparsed portion starts with it, return True if consumed."""

		if self.buf.startswith(token, self.pos):
			self.pos += len(token)
			return True

		return False

	def read(self, length):
		"""Consume and return exactly 'length' elements."""

		if length > self.remaining():
			raise TruncatedPayloadException('Cannot read data (expected: {} elements, available: {} elements)'.format(length, self.remaining()))

		chunk = self.buf[self.pos : self.pos + length]
		self.pos += length
		return chunk

	def advance(self, length):
		self.read(length)

	def find(self, token, start = 0):
		"""Return the offset (relative to the cursor) of 'token' at or after 'start', or -1."""

		i = self.buf.find(token, self.pos + start)
		if i == -1:
			return -1

		return i - self.pos

	def find_aligned(self, token, alignment):
		"""Return the offset (relative to the cursor) of 'token' starting on an 'alignment' boundary, or -1."""

		i = self.buf.find(token, self.pos)
		while i != -1:
			if (i - self.pos) % alignment == 0:
				return i - self.pos

			i = self.buf.find(token, i + 1)

		return -1

def GlobalSubstitute(String, Pattern, Replacement):
	"""Replace every occurrence of Pattern in String, from left to right. Inserted text is never rescanned."""

	return String.replace(Pattern, Replacement)

def EncodeHex(Buffer):
	"""Return bytes from Buffer as lowercase hexadecimal digits (two per byte)."""

	return bytes(Buffer).hex()

def DecodeHex(Digits):
	"""Decode a string of hexadecimal digits (an even number of them) and return bytes."""

	if len(Digits) % 2 != 0 or not HEX_DIGITS.issuperset(Digits):
		raise InvalidDigitSequenceException('Not a sequence of hexadecimal digit pairs: {}'.format(Digits))

	return bytes.fromhex(Digits)

def PackUInt32(i):
	if i < 0 or i > UINT32_MAX:
		raise ValueTooLargeException('Number does not fit into 32 bits: {}'.format(i))

	return pack('<L', i)

def UnpackUInt32(Buffer):
	if len(Buffer) != 4:
		raise TruncatedPayloadException('Expected 4 bytes, got: {}'.format(len(Buffer)))

	return unpack('<L', Buffer)[0]

def PackUInt64(i):
	if i < 0 or i > UINT64_MAX:
		raise ValueTooLargeException('Number does not fit into 64 bits: {}'.format(i))

	return pack('<Q', i)

def UnpackUInt64(Buffer):
	if len(Buffer) != 8:
		raise TruncatedPayloadException('Expected 8 bytes, got: {}'.format(len(Buffer)))

	return unpack('<Q', Buffer)[0]

def EncodeUnicode(String):
	"""Encode a string to UTF-16LE. Lone surrogates are kept as is."""

	return String.encode('utf-16le', errors = 'surrogatepass')

def CodeUnitsCount(String):
	"""Return the number of UTF-16 code units needed to store a string (characters outside the BMP take two)."""

	return len(String) + sum(1 for c in String if ord(c) > 0xFFFF)

def DecodeUnicode(Buffer):
	"""Decode a UTF-16LE buffer (one string character per code unit for non-paired surrogates) and return it."""

	if len(Buffer) % 2 != 0:
		raise TruncatedPayloadException('Odd number of bytes in UTF-16LE data: {}'.format(len(Buffer)))

	return Buffer.decode('utf-16le', errors = 'surrogatepass')

def ReadWholeFile(FilePath):
	"""Read and return the contents of a file (as raw bytes)."""

	try:
		with open(FilePath, 'rb') as f:
			return f.read()
	except OSError as e:
		raise IoFailureException('Cannot read file: {}'.format(e), FilePath)

def CurrentUmask():
	"""Return the file mode creation mask of the process (it can only be read by setting it)."""

	umask = os.umask(0)
	os.umask(umask)
	return umask

def WriteWholeFile(FilePath, Data):
	"""Create or overwrite a file with Data.
	The data is written to a temporary file first, which then replaces the destination, so no partial file is left behind.
	"""

	directory = os.path.dirname(os.path.abspath(FilePath))

	try:
		fd, temp_path = tempfile.mkstemp(prefix = '.hiveswarming-', dir = directory)
	except OSError as e:
		raise IoFailureException('Cannot create a temporary file: {}'.format(e), FilePath)

	try:
		with os.fdopen(fd, 'wb') as f:
			f.write(Data)

		# The temporary file is owner-only, give it the mode a plain creation would give.
		os.chmod(temp_path, DEFAULT_FILE_MODE & ~CurrentUmask())
		os.replace(temp_path, FilePath)
	except OSError as e:
		try:
			os.remove(temp_path)
		except OSError:
			pass

		raise IoFailureException('Cannot write file: {}'.format(e), FilePath)
