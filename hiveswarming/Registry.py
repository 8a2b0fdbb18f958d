# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module implements a high-level interface to load a tree of keys from a file and to save it to a file, by format name.

import logging

from . import RegistryText, RegistryPolicy, RegistryLive
from .RegistryRecords import DEFAULT_ROOT_NAME
from .RegistryHelpers import RegistryException, ReadWholeFile, WriteWholeFile

logger = logging.getLogger(__name__)

FORMAT_HIVE = 'hive'
FORMAT_REG = 'reg'
FORMAT_REG_EXTENDED = 'reg+' # The .reg format with readable renditions for more value types.
FORMAT_POL = 'pol'

FORMATS = [ FORMAT_HIVE, FORMAT_REG, FORMAT_REG_EXTENDED, FORMAT_POL ]

class UnknownFormatException(RegistryException):
	"""This exception is raised when a format name is not supported."""

	pass

class Converter(object):
	"""This class loads and saves trees of keys (RegistryKey objects) in the supported formats."""

	def __init__(self, hive_api = None, root_name = DEFAULT_ROOT_NAME):
		"""Create a converter.
		'hive_api' is used for hive files (a WindowsRegistryApi object, or None to set up one when needed).
		'root_name' is the name given to the root key when the format does not store it (hive and .pol files).
		"""

		self.hive_api = hive_api
		self.root_name = root_name

	def load(self, fmt, path):
		"""Load a file in a given format, return the root key (a RegistryKey object)."""

		logger.info('Loading %s file: %s', fmt, path)

		if fmt == FORMAT_HIVE:
			tree = RegistryLive.LoadHiveAsTree(path, self.root_name, self.hive_api)
		elif fmt == FORMAT_REG or fmt == FORMAT_REG_EXTENDED:
			tree = RegistryText.RegFileToTree(ReadWholeFile(path))
		elif fmt == FORMAT_POL:
			tree = RegistryPolicy.PolFileToTree(ReadWholeFile(path), self.root_name)
		else:
			raise UnknownFormatException('Unknown format: {}'.format(fmt))

		logger.debug('Loaded tree: %s', tree)
		return tree

	def save(self, tree, fmt, path):
		"""Save a tree (a RegistryKey object) to a file in a given format."""

		logger.info('Saving %s file: %s', fmt, path)

		if fmt == FORMAT_HIVE:
			RegistryLive.WriteTreeAsHive(tree, path, self.hive_api)
			return

		if fmt == FORMAT_REG:
			data = RegistryText.TreeToRegFile(tree, False)
		elif fmt == FORMAT_REG_EXTENDED:
			data = RegistryText.TreeToRegFile(tree, True)
		elif fmt == FORMAT_POL:
			data = RegistryPolicy.TreeToPolFile(tree)
		else:
			raise UnknownFormatException('Unknown format: {}'.format(fmt))

		WriteWholeFile(path, data)
		logger.debug('Wrote %d bytes to: %s', len(data), path)

	def convert(self, from_fmt, from_path, to_fmt, to_path):
		"""Load a file in one format and save its contents to another file in another (or the same) format."""

		tree = self.load(from_fmt, from_path)
		self.save(tree, to_fmt, to_path)
		return tree

