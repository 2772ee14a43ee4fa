"""Block height watchdog for a NEAR Lake indexer container."""

__version__ = "0.1.0"
