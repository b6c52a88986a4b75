"""Bulk accumulator: buffer index/delete operations and send them in batches."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from catsync.search.client import SearchClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class IndexOp:
    """Index (create or replace) *source* as document *doc_id* in *index*."""

    index: str
    doc_id: str
    source: str

    def lines(self) -> list[str]:
        source = self.source
        if "\n" in source:
            source = json.dumps(json.loads(source), separators=(",", ":"))
        action = {"index": {"_index": self.index, "_id": self.doc_id}}
        return [json.dumps(action, separators=(",", ":")), source]


@dataclass(frozen=True)
class DeleteOp:
    """Delete document *doc_id* from *index*."""

    index: str
    doc_id: str

    def lines(self) -> list[str]:
        action = {"delete": {"_index": self.index, "_id": self.doc_id}}
        return [json.dumps(action, separators=(",", ":"))]


BulkOp = Union[IndexOp, DeleteOp]


class BulkIndexer:
    """Collects operations and flushes every *batch_size* of them.

    A failed flush still clears the buffer: the batch is not resent.
    """

    def __init__(self, client: SearchClient, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)
        self._client = client
        self._batch_size = batch_size
        self._pending: list[BulkOp] = []
        self.flushes = 0
        self.sent = 0

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, op: BulkOp) -> None:
        """Queue *op*, flushing when the batch is full."""
        self._pending.append(op)
        if len(self._pending) >= self._batch_size:
            self.flush()

    def can_flush(self) -> bool:
        return bool(self._pending)

    def flush(self) -> None:
        """Send everything buffered as one bulk request."""
        batch, self._pending = self._pending, []
        if not batch:
            return
        lines: list[str] = []
        for op in batch:
            lines.extend(op.lines())
        payload = "\n".join(lines) + "\n"
        logger.debug("Flushing %d bulk operations", len(batch))
        self._client.bulk(payload)
        self.flushes += 1
        self.sent += len(batch)
