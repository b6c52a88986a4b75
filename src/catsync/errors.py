"""Exception hierarchy shared by the catalog, search and reconcile layers."""

from __future__ import annotations


class CatsyncError(Exception):
    """Base class for every error raised by catsync."""


class ConfigError(CatsyncError, ValueError):
    """Raised when the configuration file is missing fields or malformed."""


class TooManyResultsError(CatsyncError):
    """Raised when a prefix matches more rows than a single pass may handle.

    Not a crash: the caller is expected to subdivide the prefix and retry.
    """

    def __init__(self, count: int, prefix: str, source: str) -> None:
        self.count = count
        self.prefix = prefix
        self.source = source
        super().__init__(f"Too many results in prefix {prefix!r} ({count} in {source})")


class CatalogError(CatsyncError):
    """Raised when a catalog query fails."""


class SearchIndexError(CatsyncError):
    """Raised when the search index is unreachable or rejects a request."""


class BulkError(SearchIndexError):
    """Raised when queuing or flushing bulk operations fails."""


class DocumentError(CatsyncError, ValueError):
    """Raised when a JSON document does not have the expected shape."""
