"""Index snapshot: what the search index currently holds for a prefix."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from catsync.document import Document, document_from_dict
from catsync.errors import DocumentError, SearchIndexError, TooManyResultsError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from catsync.search.client import SearchClient

logger = logging.getLogger(__name__)


@dataclass
class IndexSnapshot:
    """Documents indexed under a prefix, keyed by document id."""

    total: int = 0
    documents: dict[str, Document] = field(default_factory=dict)
    types: dict[str, str] = field(default_factory=dict)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self.documents

    def get(self, doc_id: str) -> Document | None:
        return self.documents.get(doc_id)


def build_prefix_query(prefix: str, size: int) -> dict[str, Any]:
    """Match ids starting with *prefix* in either case, sorted by id."""
    return {
        "query": {
            "bool": {
                "should": [
                    {"prefix": {"id": prefix.upper()}},
                    {"prefix": {"id": prefix.lower()}},
                ],
                "minimum_should_match": 1,
            },
        },
        "sort": [{"id": "asc"}],
        "size": size,
        "track_total_hits": True,
    }


def _total_hits(hits: dict[str, Any]) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        total = total.get("value", 0)
    try:
        return int(total)
    except (TypeError, ValueError) as exc:
        msg = f"Search response has an unreadable hit total: {total!r}"
        raise SearchIndexError(msg) from exc


def take_snapshot(
    client: SearchClient,
    prefix: str,
    indices: Mapping[str, str],
    *,
    max_in_prefix: int,
) -> IndexSnapshot:
    """Fetch every indexed document whose id starts with *prefix*.

    *indices* maps category (``file``/``folder``) to index name.  A hit that
    cannot be decoded is left out of the snapshot so it gets re-indexed.

    Raises
    ------
    TooManyResultsError
        If the index reports more than *max_in_prefix* matches.
    SearchIndexError
        If the search request fails.
    """
    category_by_index = {name: category for category, name in indices.items()}
    response = client.search(list(indices.values()), build_prefix_query(prefix, max_in_prefix))

    hits = response.get("hits") or {}
    total = _total_hits(hits)
    logger.debug("Got %d documents for prefix %s (index)", total, prefix)

    if total > max_in_prefix:
        raise TooManyResultsError(total, prefix, "index")

    snapshot = IndexSnapshot(total=total)
    for hit in hits.get("hits") or []:
        doc_id = hit.get("_id")
        if not doc_id:
            continue
        try:
            doc = document_from_dict(hit.get("_source"))
        except DocumentError as exc:
            logger.warning("Unreadable indexed document %s, treating as absent: %s", doc_id, exc)
            continue

        snapshot.documents[doc_id] = doc
        category = category_by_index.get(hit.get("_index", ""))
        if category is not None:
            snapshot.types[doc_id] = category
    return snapshot
