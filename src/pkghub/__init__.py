"""pkghub: package catalog indexing pipeline."""

__version__ = "0.1.0"
