"""changegate: review pending changes and decide whether they may be pushed."""

__version__ = "0.1.0"
