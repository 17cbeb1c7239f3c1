"""Query-driven file search that dumps matching files, code blocks, paths or metadata."""

__version__ = "0.1.0"