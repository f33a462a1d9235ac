"""Batch media management: compress, uncompress, convert, scan and tag media trees."""

__version__ = "2.6.0"
