from setuptools import setup
from hiveswarming import __version__

setup(
	name = 'hiveswarming',
	version = __version__,
	license = 'Apache-2.0',
	packages = [ 'hiveswarming' ],
	provides = [ 'hiveswarming' ],
	scripts = [ 'hiveswarming-convert' ],
	description = 'Registry hive, .reg and .pol converter',
	author = 'Stormshield',
	python_requires = '>=3.6',
	extras_require = { 'test': [ 'pytest' ] },
	classifiers = [
		'License :: OSI Approved :: Apache Software License',
		'Operating System :: OS Independent',
		'Programming Language :: Python :: 3',
		'Development Status :: 5 - Production/Stable'
	]
)
