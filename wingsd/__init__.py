"""Sandboxed server data directories with quotas, archives, backups and console throttling."""

__version__ = "0.1.0"