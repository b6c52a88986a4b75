"""Search domain — index client, prefix snapshots and bulk writes."""

from catsync.search.bulk import BulkIndexer, DeleteOp, IndexOp
from catsync.search.client import SearchClient, connect_search
from catsync.search.snapshot import IndexSnapshot, take_snapshot

__all__ = [
    "BulkIndexer",
    "DeleteOp",
    "IndexOp",
    "IndexSnapshot",
    "SearchClient",
    "connect_search",
    "take_snapshot",
]
