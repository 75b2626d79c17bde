"""unisearch — One search contract over many full-text search backends."""

__version__ = "0.1.0"
