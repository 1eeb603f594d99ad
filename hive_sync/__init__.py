# hive_sync/__init__.py
# Offline catalog synchronization service for the Hive marketplace backend.
__version__ = "0.1.0"
