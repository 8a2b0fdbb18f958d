# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield
#
# This module implements the command line interface: convert a file from one format to another.

import argparse
import logging

from . import __version__
from .Registry import Converter, FORMATS
from .RegistryRecords import DEFAULT_ROOT_NAME
from .RegistryHelpers import RegistryException

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

def BuildParser():
	parser = argparse.ArgumentParser(prog = 'hiveswarming-convert', description = 'Convert registry data between hive files (Windows only), .reg files and .pol files.',
		epilog = 'Formats: hive (registry hive), reg (.reg file), reg+ (.reg file with readable REG_QWORD, REG_MULTI_SZ and REG_EXPAND_SZ values), pol (registry policy file).')

	parser.add_argument('--from', dest = 'from_fmt', required = True, choices = FORMATS, help = 'format of the input file')
	parser.add_argument('--to', dest = 'to_fmt', required = True, choices = FORMATS, help = 'format of the output file')
	parser.add_argument('--root-name', dest = 'root_name', default = DEFAULT_ROOT_NAME,
		help = 'name of the root key when reading hive and .pol files (default: {})'.format(DEFAULT_ROOT_NAME))
	parser.add_argument('-v', '--verbose', action = 'count', default = 0, help = 'verbosity: -v, -vv')
	parser.add_argument('--version', action = 'version', version = __version__)
	parser.add_argument('input', help = 'input file')
	parser.add_argument('output', help = 'output file')

	return parser

def ConfigureLogging(Verbosity):
	if Verbosity >= 2:
		level = logging.DEBUG
	elif Verbosity == 1:
		level = logging.INFO
	else:
		level = logging.WARNING

	logging.basicConfig(level = level, format = '%(levelname)s: %(message)s')

def main(argv = None):
	"""Run the command line interface, return an exit status. Invalid arguments exit with status 2."""

	args = BuildParser().parse_args(argv)
	ConfigureLogging(args.verbose)

	converter = Converter(root_name = args.root_name)

	try:
		converter.convert(args.from_fmt, args.input, args.to_fmt, args.output)
	except RegistryException as e:
		logger.error('Conversion failed (%s): %s', type(e).__name__, e)
		return EXIT_FAILURE

	logger.info('Converted %s (%s) to %s (%s)', args.input, args.from_fmt, args.output, args.to_fmt)
	return EXIT_SUCCESS
