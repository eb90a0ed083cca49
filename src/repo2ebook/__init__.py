"""Convert source repositories and Markdown trees into ebooks."""

__version__ = "0.1.0"
