"""Run a command while holding a MySQL advisory lock."""

__version__ = "0.1.0"
