# hiveswarming: registry hive, .reg and .pol converter
# (c) Stormshield

__version__ = '1.0.0'
