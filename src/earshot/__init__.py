"""earshot - social music listening backend."""

__version__ = "0.1.0"
