"""Reconcile one UUID prefix: catalog projection vs. index snapshot → bulk ops."""

from __future__ import annotations

import logging
import time
from contextlib import closing
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from catsync.catalog.projector import CatalogProjector
from catsync.errors import BulkError, SearchIndexError, TooManyResultsError
from catsync.infrastructure.catalog_db import read_scope
from catsync.reconcile.classify import Classification, classify
from catsync.search.bulk import BulkIndexer, DeleteOp, IndexOp
from catsync.search.snapshot import take_snapshot

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Iterator

    from catsync.config import Config
    from catsync.search.client import SearchClient
    from catsync.search.snapshot import IndexSnapshot

logger = logging.getLogger(__name__)


@dataclass
class PassStats:
    """Counters for one reconciliation pass."""

    prefix: str = ""
    rows: int = 0
    documents: int = 0
    processed: int = 0
    dataobjects: int = 0
    dataobjects_added: int = 0
    dataobjects_updated: int = 0
    dataobjects_removed: int = 0
    colls: int = 0
    colls_added: int = 0
    colls_updated: int = 0
    colls_removed: int = 0
    operations: int = 0
    elapsed: float = 0.0

    def record(self, category: str, classification: Classification) -> None:
        """Count one processed row of *category*."""
        self.processed += 1
        if category == "folder":
            self.colls += 1
            if classification is Classification.INDEX:
                self.colls_added += 1
            elif classification is Classification.UPDATE:
                self.colls_updated += 1
        else:
            self.dataobjects += 1
            if classification is Classification.INDEX:
                self.dataobjects_added += 1
            elif classification is Classification.UPDATE:
                self.dataobjects_updated += 1

    def record_removal(self, category: str) -> None:
        if category == "folder":
            self.colls_removed += 1
        else:
            self.dataobjects_removed += 1

    def summary(self) -> str:
        return (
            f"Processed {self.processed} entries ({self.rows} rows, {self.documents} documents, "
            f"processed {self.dataobjects} data objects "
            f"(+{self.dataobjects_added},U{self.dataobjects_updated},-{self.dataobjects_removed}), "
            f"{self.colls} colls (+{self.colls_added},U{self.colls_updated},-{self.colls_removed})) "
            f"in {self.elapsed:.3f}s"
        )

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def _process_rows(
    rows: Iterator[tuple[str, str]],
    category: str,
    index_name: str,
    snapshot: IndexSnapshot,
    seen: set[str],
    indexer: BulkIndexer,
    stats: PassStats,
) -> None:
    with closing(rows):
        for doc_id, document_json in rows:
            seen.add(doc_id)
            classification = classify(doc_id, document_json, snapshot)

            if classification is Classification.UPDATE:
                logger.debug("%s %s, documents differ, indexing", category, doc_id)
            elif classification is Classification.INDEX:
                logger.debug("%s %s not in index, indexing", category, doc_id)

            if classification.needs_write:
                try:
                    indexer.add(IndexOp(index=index_name, doc_id=doc_id, source=document_json))
                except SearchIndexError as exc:
                    msg = f"Got error adding index of {doc_id} to indexer"
                    raise BulkError(msg) from exc

            stats.record(category, classification)


def _process_deletions(
    snapshot: IndexSnapshot,
    seen: set[str],
    indices: dict[str, str],
    indexer: BulkIndexer,
    stats: PassStats,
) -> None:
    for doc_id in snapshot.documents:
        if doc_id in seen:
            continue
        category = snapshot.types.get(doc_id)
        if category is None:
            logger.error("Could not find type for document %s, assuming file", doc_id)
            category = "file"
        logger.debug("%s %s not seen in catalog, deleting", category, doc_id)
        stats.record_removal(category)
        try:
            indexer.add(DeleteOp(index=indices[category], doc_id=doc_id))
        except SearchIndexError as exc:
            msg = "Got error adding delete to indexer"
            raise BulkError(msg) from exc

    logger.debug(
        "%d data-objects to delete, %d collections to delete",
        stats.dataobjects_removed,
        stats.colls_removed,
    )


def reindex_prefix(
    catalog: sqlite3.Connection,
    client: SearchClient,
    prefix: str,
    config: Config,
) -> PassStats:
    """Bring the index in line with the catalog for ids starting with *prefix*.

    Parameters
    ----------
    catalog:
        Catalog connection from :func:`~catsync.infrastructure.catalog_db.open_catalog`.
    client:
        Search index client.
    prefix:
        UUID prefix processed by this pass.
    config:
        Cap, batch size and index names.

    Returns
    -------
    PassStats
        Counters for the pass.

    Raises
    ------
    TooManyResultsError
        If the catalog or the index holds more than ``max_in_prefix`` entries
        for the prefix; the caller should subdivide it.
    CatsyncError
        Any other failure aborts the pass.  Batches already flushed stay
        applied.
    """
    settings = config.reindex
    indices = dict(config.search.indices)
    stats = PassStats(prefix=prefix)
    indexer = BulkIndexer(client, settings.batch_size)
    start = time.monotonic()
    logger.debug("Indexing prefix %s", prefix)

    try:
        with read_scope(catalog) as scope:
            projector = CatalogProjector(
                scope,
                max_in_prefix=settings.max_in_prefix,
                uuid_attribute=settings.uuid_attribute,
            )
            try:
                stats.rows = projector.project(prefix)
            except TooManyResultsError as exc:
                stats.rows = exc.count
                raise
            projector.build_permissions()
            projector.build_metadata()

            try:
                snapshot = take_snapshot(
                    client, prefix, indices, max_in_prefix=settings.max_in_prefix
                )
            except TooManyResultsError as exc:
                stats.documents = exc.count
                raise
            stats.documents = snapshot.total

            seen: set[str] = set()
            _process_rows(
                projector.file_rows(), "file", indices["file"], snapshot, seen, indexer, stats
            )
            logger.debug(
                "%d data-objects missing, %d data-objects to update",
                stats.dataobjects_added,
                stats.dataobjects_updated,
            )
            _process_rows(
                projector.folder_rows(), "folder", indices["folder"], snapshot, seen, indexer, stats
            )
            logger.debug(
                "%d collections missing, %d collections to update",
                stats.colls_added,
                stats.colls_updated,
            )
            _process_deletions(snapshot, seen, indices, indexer, stats)

            if indexer.can_flush():
                try:
                    indexer.flush()
                except SearchIndexError as exc:
                    msg = "Got error flushing bulk indexer"
                    raise BulkError(msg) from exc
    finally:
        if indexer.can_flush():
            # Only reached when the pass is aborting with an error already.
            try:
                indexer.flush()
            except SearchIndexError:
                logger.exception("Flushing remaining operations for prefix %s failed", prefix)
        stats.operations = indexer.sent
        stats.elapsed = time.monotonic() - start
        logger.info("Prefix %s: %s", prefix, stats.summary())

    return stats
