"""Decide what, if anything, a projected document needs in the index."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from catsync.document import documents_equal, parse_document

if TYPE_CHECKING:
    from catsync.search.snapshot import IndexSnapshot


class Classification(enum.Enum):
    """Outcome of comparing a catalog object with its indexed document."""

    NO_ACTION = "no-action"
    INDEX = "index"
    UPDATE = "update"

    @property
    def needs_write(self) -> bool:
        return self is not Classification.NO_ACTION


def classify(doc_id: str, document_json: str, snapshot: IndexSnapshot) -> Classification:
    """Classify the projected document *document_json* for *doc_id*.

    Raises
    ------
    DocumentError
        If *document_json* cannot be decoded; projector output is expected
        to always be well formed.
    """
    indexed = snapshot.get(doc_id)
    if indexed is None:
        return Classification.INDEX

    projected = parse_document(document_json)
    if not documents_equal(projected, indexed):
        return Classification.UPDATE
    return Classification.NO_ACTION
