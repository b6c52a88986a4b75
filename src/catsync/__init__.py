"""Catsync: keep a search index in step with a file catalog, one UUID prefix at a time."""

__version__ = "0.4.0"
