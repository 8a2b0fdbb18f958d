# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module implements a converter between a tree of keys and the text (.reg) format.
# The output is byte-compatible with files exported by the Registry Editor (UTF-16LE, version 5.00).
# When extensions are enabled, REG_QWORD, REG_MULTI_SZ and REG_EXPAND_SZ values get readable renditions;
# these renditions are always recognized when parsing.

import logging

from . import RegistryRecords
from .RegistryHelpers import (RegistryException, MalformedPreambleException, UnterminatedTokenException, InvalidDigitSequenceException,
	TruncatedPayloadException, MissingRootKeyException, MultipleRootKeysException, TrailingDataException, ValueTooLargeException,
	ReadHead, GlobalSubstitute, EncodeHex, DecodeHex, PackUInt32, UnpackUInt32, PackUInt64, UnpackUInt64, EncodeUnicode, DecodeUnicode, CodeUnitsCount,
	UINT32_MAX, HEX_DIGITS)

logger = logging.getLogger(__name__)

NEWLINE = '\r\n'
PREAMBLE = '\ufeff' + 'Windows Registry Editor Version 5.00' + NEWLINE + NEWLINE # The first character is the byte order mark.

KEY_OPENING = '['
KEY_CLOSING = ']'
PATH_SEPARATOR = RegistryRecords.PATH_SEPARATOR

DEFAULT_VALUE = '@' # This is used in place of a quoted name for the default value.
STRING_DELIMITER = '"'
STRING_DELIMITER_ESCAPE = '\\'
VALUE_NAME_SEPARATOR = '='

DWORD_PREFIX = 'dword'
QWORD_PREFIX = 'qword' # Extension.
HEX_PREFIX = 'hex'
MULTI_SZ_PREFIX = 'multi_sz' # Extension.
EXPAND_SZ_PREFIX = 'expand_sz' # Extension.

HEX_TYPE_OPENING = '('
HEX_TYPE_CLOSING = ')'
TYPE_DATA_SEPARATOR = ':'
HEX_BYTE_SEPARATOR = ','
MULTI_SZ_SEPARATOR = ','

HEX_WRAPPING_LIMIT = 80
MULTI_SZ_WRAPPING_LIMIT = 80
HEX_LEADING_SPACES = 2
LEADING_SPACE = ' '
ESCAPED_NEWLINE = '\\' + NEWLINE

def EscapeString(String):
	"""Escape a value name or string data for use between double quotes."""

	String = GlobalSubstitute(String, '\\', '\\\\')
	String = GlobalSubstitute(String, '"', '\\"')
	String = GlobalSubstitute(String, '\n', '\r\n')
	return String

def RenderBinaryValue(Value, FirstLineSize):
	"""Render a value as hexadecimal bytes: hex:xx,xx,... (REG_BINARY) or hex(t):xx,xx,... (other types).
	'FirstLineSize' is the number of characters already written on the current line.
	Lines are wrapped the same way the Registry Editor wraps them.
	"""

	if Value.type < 0 or Value.type > UINT32_MAX:
		raise ValueTooLargeException('Value type does not fit into 32 bits: {}'.format(Value.type))

	if Value.type == RegistryRecords.REG_BINARY:
		header = HEX_PREFIX + TYPE_DATA_SEPARATOR
	else:
		header = '{}{}{:x}{}{}'.format(HEX_PREFIX, HEX_TYPE_OPENING, Value.type, HEX_TYPE_CLOSING, TYPE_DATA_SEPARATOR)

	parts = [ header ]
	line_size = FirstLineSize + len(header)

	digits = EncodeHex(Value.data)
	count = len(Value.data)
	i = 0
	while i < count:
		parts.append(digits[2 * i : 2 * i + 2])
		line_size += 2

		if i + 1 != count:
			parts.append(HEX_BYTE_SEPARATOR)
			line_size += 1

			if line_size > HEX_WRAPPING_LIMIT - 4:
				# Adding 'xx,\' would go over the limit.
				parts.append(ESCAPED_NEWLINE)
				parts.append(LEADING_SPACE * HEX_LEADING_SPACES)
				line_size = HEX_LEADING_SPACES

		i += 1

	parts.append(NEWLINE)
	return ''.join(parts)

def RenderDwordValue(Value, FirstLineSize):
	if len(Value.data) != 4:
		return RenderBinaryValue(Value, FirstLineSize)

	return '{}{}{:08x}{}'.format(DWORD_PREFIX, TYPE_DATA_SEPARATOR, UnpackUInt32(Value.data), NEWLINE)

def RenderQwordValue(Value, FirstLineSize):
	if len(Value.data) != 8:
		return RenderBinaryValue(Value, FirstLineSize)

	return '{}{}{:016x}{}'.format(QWORD_PREFIX, TYPE_DATA_SEPARATOR, UnpackUInt64(Value.data), NEWLINE)

def RenderStringValue(Value, FirstLineSize):
	"""Render a REG_SZ value as a quoted string.
	Data that is not a single null-terminated UTF-16LE string (odd size, no terminator, embedded null characters) is rendered as hexadecimal bytes.
	"""

	if len(Value.data) % 2 != 0 or len(Value.data) == 0:
		return RenderBinaryValue(Value, FirstLineSize)

	string = DecodeUnicode(Value.data)
	if string[-1] != '\x00' or string.find('\x00') != len(string) - 1:
		return RenderBinaryValue(Value, FirstLineSize)

	return STRING_DELIMITER + EscapeString(string[ : -1]) + STRING_DELIMITER + NEWLINE

def RenderMultiSzValue(Value, FirstLineSize, TypeSpecifier):
	"""Render a value as a list of quoted strings: multi_sz:"a","b","" or expand_sz:"a".
	Each quoted string stands for a null-terminated string in data, so a regular REG_MULTI_SZ value ends with "".
	Data that does not end with a null character is rendered as hexadecimal bytes.
	Continuation lines are indented up to the end of the value name.
	"""

	if len(Value.data) % 2 != 0 or len(Value.data) == 0:
		return RenderBinaryValue(Value, FirstLineSize)

	string = DecodeUnicode(Value.data)
	if string[-1] != '\x00':
		return RenderBinaryValue(Value, FirstLineSize)

	strings = string[ : -1].split('\x00')

	header = TypeSpecifier + TYPE_DATA_SEPARATOR
	parts = [ header ]
	line_size = FirstLineSize + len(header)

	last = len(strings) - 1
	for i, curr_string in enumerate(strings):
		quoted = STRING_DELIMITER + EscapeString(curr_string) + STRING_DELIMITER
		parts.append(quoted)
		line_size += CodeUnitsCount(quoted)

		if i == last:
			break

		parts.append(MULTI_SZ_SEPARATOR)
		line_size += 1

		if line_size > MULTI_SZ_WRAPPING_LIMIT - 2:
			# Adding ',\' would go over the limit.
			parts.append(ESCAPED_NEWLINE)
			parts.append(LEADING_SPACE * FirstLineSize)
			line_size = FirstLineSize

	parts.append(NEWLINE)
	return ''.join(parts)

def RenderValue(Value, EnableExtensions):
	"""Render a value line (or lines), including the value name and the final newline."""

	if len(Value.name) == 0:
		name_part = DEFAULT_VALUE + VALUE_NAME_SEPARATOR
	else:
		name_part = STRING_DELIMITER + EscapeString(Value.name) + STRING_DELIMITER + VALUE_NAME_SEPARATOR

	first_line_size = CodeUnitsCount(name_part)

	if Value.type == RegistryRecords.REG_DWORD:
		data_part = RenderDwordValue(Value, first_line_size)
	elif Value.type == RegistryRecords.REG_SZ:
		data_part = RenderStringValue(Value, first_line_size)
	elif Value.type == RegistryRecords.REG_QWORD and EnableExtensions:
		data_part = RenderQwordValue(Value, first_line_size)
	elif Value.type == RegistryRecords.REG_MULTI_SZ and EnableExtensions:
		data_part = RenderMultiSzValue(Value, first_line_size, MULTI_SZ_PREFIX)
	elif Value.type == RegistryRecords.REG_EXPAND_SZ and EnableExtensions:
		data_part = RenderMultiSzValue(Value, first_line_size, EXPAND_SZ_PREFIX)
	else:
		data_part = RenderBinaryValue(Value, first_line_size)

	return name_part + data_part

def TreeToRegFile(Key, EnableExtensions = False):
	"""Render a key, its values and all its descendants in the .reg format, return the file contents (as raw bytes).
	When 'EnableExtensions' is True, use readable renditions for REG_QWORD, REG_MULTI_SZ and REG_EXPAND_SZ values.
	"""

	parts = [ PREAMBLE ]
	keys_count = 0

	stack = [ (None, Key) ]
	while len(stack) > 0:
		parent_path, key = stack.pop()

		if parent_path is None:
			key_path = key.name
		else:
			key_path = parent_path + PATH_SEPARATOR + key.name

		# Key names may contain new line characters.
		parts.append(KEY_OPENING + GlobalSubstitute(key_path, '\n', '\r\n') + KEY_CLOSING + NEWLINE)

		for value in key.values:
			try:
				parts.append(RenderValue(value, EnableExtensions))
			except RegistryException as e:
				e.add_context('{} : "{}"'.format(key_path, value.name))
				raise

		parts.append(NEWLINE)
		keys_count += 1

		for subkey in reversed(key.subkeys):
			stack.append((key_path, subkey))

	logger.debug('Rendered %d keys in the .reg format', keys_count)

	return EncodeUnicode(''.join(parts))

def ReadDelimitedString(Head):
	"""Read a string between double quotes, unescape it and return it.
	A backslash escapes the next character, CR LF stands for a single new line character.
	"""

	if not Head.expect(STRING_DELIMITER):
		raise UnterminatedTokenException('Double quote expected')

	buf = Head.buf
	end = len(buf)
	pos = Head.pos
	chars = []

	while True:
		if pos >= end:
			raise UnterminatedTokenException('Could not find closing quotation mark')

		c = buf[pos]
		if c == STRING_DELIMITER:
			break

		if pos + 1 >= end:
			raise UnterminatedTokenException('Buffer too short, maybe missing new line after closing quotation mark')

		if c == STRING_DELIMITER_ESCAPE:
			chars.append(buf[pos + 1])
			pos += 2
		elif c == '\r' and buf[pos + 1] == '\n':
			pos += 1
		else:
			chars.append(c)
			pos += 1

	Head.advance(pos + 1 - Head.pos)
	return ''.join(chars)

def ReadValueName(Head):
	if Head.expect(DEFAULT_VALUE):
		return ''

	if Head.peek() != STRING_DELIMITER:
		raise UnterminatedTokenException('Value name should be literal @ or begin with double quote')

	return ReadDelimitedString(Head)

def ReadOptionalValueType(Head, DefaultType):
	"""Read a value type in parentheses (as in 'hex(7):'), if any. Return 'DefaultType' when no type is specified."""

	if Head.is_empty():
		raise TruncatedPayloadException('End of data after type declaration')

	if not Head.expect(HEX_TYPE_OPENING):
		return DefaultType

	length = 0
	remaining = Head.remaining()
	while length < remaining and Head.buf[Head.pos + length] in HEX_DIGITS:
		length += 1

	if length == remaining or Head.buf[Head.pos + length] != HEX_TYPE_CLOSING:
		raise UnterminatedTokenException('Could not find closing parenthesis')

	if length == 0:
		raise InvalidDigitSequenceException('Empty value type in parentheses')

	value_type = int(Head.read(length), 16)
	Head.advance(1)

	if value_type > UINT32_MAX:
		raise ValueTooLargeException('Value type does not fit into 32 bits: {:x}'.format(value_type))

	return value_type

def ReadIntegralValue(Head, Size):
	"""Read a number written as exactly 2 * 'Size' hexadecimal digits followed by a new line, return its binary representation."""

	digits_count = 2 * Size
	if Head.remaining() <= digits_count:
		raise TruncatedPayloadException('Less than {} characters after declaration'.format(digits_count + 1))

	digits = Head.peek(digits_count)
	if not HEX_DIGITS.issuperset(digits):
		raise InvalidDigitSequenceException('Could not parse number from string: {}'.format(digits))

	number = int(digits, 16)

	Head.advance(digits_count)

	if not Head.expect(NEWLINE):
		raise UnterminatedTokenException('Numeric value not followed by a new line')

	if Size == 4:
		return PackUInt32(number)

	return PackUInt64(number)

def ReadHexadecimalData(Head):
	"""Read comma-separated hexadecimal bytes (possibly on continuation lines) up to a new line, return them as raw bytes."""

	data = bytearray()
	while True:
		if Head.is_empty():
			raise TruncatedPayloadException('End of data while reading binary value')

		if Head.expect(NEWLINE):
			break

		if Head.expect(HEX_BYTE_SEPARATOR):
			continue

		if Head.expect(ESCAPED_NEWLINE):
			while Head.expect(LEADING_SPACE):
				pass

			continue

		pair = Head.peek(2)
		if len(pair) == 2 and pair[0] in HEX_DIGITS and pair[1] in HEX_DIGITS:
			data += DecodeHex(pair)
			Head.advance(2)
			continue

		raise InvalidDigitSequenceException('Expecting two hexadecimal digits, found: {!r}'.format(pair))

	return bytes(data)

def ReadStringData(Head):
	"""Read a string between double quotes, return it as a null-terminated UTF-16LE string (raw bytes)."""

	return EncodeUnicode(ReadDelimitedString(Head) + '\x00')

def ReadMultiSzData(Head):
	"""Read comma-separated strings between double quotes (possibly on continuation lines) up to a new line.
	Return the concatenation of null-terminated UTF-16LE strings (raw bytes).
	"""

	data = [ ReadStringData(Head) ]
	while True:
		if Head.expect(NEWLINE):
			break

		if Head.expect(MULTI_SZ_SEPARATOR):
			while Head.expect(ESCAPED_NEWLINE):
				while Head.expect(LEADING_SPACE):
					pass

		data.append(ReadStringData(Head))

	return b''.join(data)

def ReadValue(Head):
	"""Read a single value line (or lines), including the final new line, and return a RegistryValue object."""

	name = ReadValueName(Head)

	try:
		if not Head.expect(VALUE_NAME_SEPARATOR):
			raise UnterminatedTokenException('Missing = sign')

		if Head.expect(DWORD_PREFIX):
			value_type = ReadOptionalValueType(Head, RegistryRecords.REG_DWORD)
			reader = lambda head: ReadIntegralValue(head, 4)
		elif Head.expect(QWORD_PREFIX):
			value_type = ReadOptionalValueType(Head, RegistryRecords.REG_QWORD)
			reader = lambda head: ReadIntegralValue(head, 8)
		elif Head.expect(HEX_PREFIX):
			value_type = ReadOptionalValueType(Head, RegistryRecords.REG_BINARY)
			reader = ReadHexadecimalData
		elif Head.expect(MULTI_SZ_PREFIX):
			value_type = ReadOptionalValueType(Head, RegistryRecords.REG_MULTI_SZ)
			reader = ReadMultiSzData
		elif Head.expect(EXPAND_SZ_PREFIX):
			value_type = ReadOptionalValueType(Head, RegistryRecords.REG_EXPAND_SZ)
			reader = ReadMultiSzData
		else:
			# A string is just a string between double quotes.
			data = ReadStringData(Head)
			if not Head.expect(NEWLINE):
				raise UnterminatedTokenException('Value not followed by a new line')

			return RegistryRecords.RegistryValue(name, RegistryRecords.REG_SZ, data)

		if not Head.expect(TYPE_DATA_SEPARATOR):
			raise UnterminatedTokenException('Missing : sign after type declaration')

		data = reader(Head)
	except RegistryException as e:
		e.add_context('"{}"'.format(name))
		raise

	return RegistryRecords.RegistryValue(name, value_type, data)

def ReadValueList(Head, KeyPath):
	"""Read values up to an empty line (all consecutive empty lines are consumed) or the end of data, return a list of RegistryValue objects."""

	values = []
	while not Head.is_empty():
		if Head.expect(NEWLINE):
			while Head.expect(NEWLINE):
				pass

			break

		try:
			values.append(ReadValue(Head))
		except RegistryException as e:
			if e.path is None:
				e.add_context(KeyPath)
			else:
				e.path = KeyPath + ' : ' + e.path

			raise

	return values

def RegFileToTree(Buffer):
	"""Parse the contents of a .reg file (as raw bytes), return the root key (a RegistryKey object).
	The file must contain exactly one top-level key; other keys must be its descendants.
	A key is a child of the previous key with a path prefix, so keys must be listed in pre-order.
	"""

	text = DecodeUnicode(Buffer)
	head = ReadHead(text)

	if not head.expect(PREAMBLE):
		raise MalformedPreambleException('.reg file preamble not found')

	key_closing_at_eol = KEY_CLOSING + NEWLINE

	roots = []
	keys_count = 0

	# Each level holds a path prefix and a list of keys for that prefix.
	levels = [ ('', roots) ]
	while len(levels) > 0:
		while head.expect(NEWLINE):
			pass

		if head.is_empty() or head.peek() != KEY_OPENING:
			break

		prefix, container = levels[-1]

		end_pos = head.find(key_closing_at_eol, 1)
		if end_pos == -1:
			raise UnterminatedTokenException('Could not find closing bracket followed by new line', prefix or None)

		key_path = head.peek(end_pos)[1 : ]
		if len(key_path) <= len(prefix) or not key_path.startswith(prefix):
			# Not a child of the current key, try the parent key.
			levels.pop()
			continue

		# Key names may contain new line characters.
		name = GlobalSubstitute(key_path[len(prefix) : ], '\r\n', '\n')
		head.advance(end_pos + len(key_closing_at_eol))

		key = RegistryRecords.RegistryKey(name)
		key.values = ReadValueList(head, key_path)
		container.append(key)
		keys_count += 1

		levels.append((key_path + PATH_SEPARATOR, key.subkeys))

	if len(roots) == 0:
		if not head.is_empty():
			raise UnterminatedTokenException('Line does not begin with opening bracket')

		raise MissingRootKeyException('No registry key found')

	if len(roots) > 1:
		raise MultipleRootKeysException('Multiple root keys were found: {}'.format(len(roots)), roots[1].name)

	if not head.is_empty():
		raise TrailingDataException('Conversion left {} code units unparsed'.format(head.remaining()))

	logger.debug('Parsed %d keys in the .reg format', keys_count)

	return roots[0]
