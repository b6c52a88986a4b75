"""Document model shared by catalog projections and indexed documents.

Both sides of a reconciliation pass are parsed into :class:`Document` so they
can be compared field by field.  ``metadata`` and ``userPermissions`` compare
as sets: entry order never matters and duplicate entries collapse.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from catsync.errors import DocumentError

# Fields whose JSON value is a string; ``null`` reads as "".
_STRING_FIELDS = ("id", "path", "label", "creator", "fileType")

# Fields whose JSON value is an integer; ``null`` reads as 0.
_INT_FIELDS = ("dateCreated", "dateModified", "fileSize")


@dataclass(frozen=True)
class Metadatum:
    """One ``{attribute, value, unit}`` triple."""

    attribute: str
    value: str
    unit: str


@dataclass(frozen=True)
class UserPermission:
    """One ``{user, permission}`` pair; *permission* is read/write/own or None."""

    user: str
    permission: str | None


@dataclass(eq=False)
class Document:
    """A file or folder as stored in the search index."""

    id: str = ""
    path: str = ""
    label: str = ""
    creator: str = ""
    file_type: str = ""
    date_created: int = 0
    date_modified: int = 0
    file_size: int = 0
    metadata: list[Metadatum] = field(default_factory=list)
    user_permissions: list[UserPermission] = field(default_factory=list)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return documents_equal(self, other)

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape used by the index."""
        return {
            "id": self.id,
            "path": self.path,
            "label": self.label,
            "creator": self.creator,
            "fileType": self.file_type,
            "dateCreated": self.date_created,
            "dateModified": self.date_modified,
            "fileSize": self.file_size,
            "metadata": [
                {"attribute": m.attribute, "value": m.value, "unit": m.unit}
                for m in self.metadata
            ],
            "userPermissions": [
                {"user": p.user, "permission": p.permission} for p in self.user_permissions
            ],
        }


def _as_str(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        msg = f"Field {key!r} must be a string, got {type(value).__name__}"
        raise DocumentError(msg)
    return value


def _as_int(raw: dict[str, Any], key: str) -> int:
    value = raw.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Field {key!r} must be an integer, got {type(value).__name__}"
        raise DocumentError(msg)
    return value


def _as_list(raw: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        msg = f"Field {key!r} must be a list of objects"
        raise DocumentError(msg)
    return value


def document_from_dict(raw: Any) -> Document:
    """Build a :class:`Document` from an already-decoded JSON object.

    Unknown keys are ignored, ``null`` values fall back to empty defaults.

    Raises
    ------
    DocumentError
        If *raw* is not an object or a field has the wrong type.
    """
    if not isinstance(raw, dict):
        msg = f"Document must be a JSON object, got {type(raw).__name__}"
        raise DocumentError(msg)

    strings = {key: _as_str(raw, key) for key in _STRING_FIELDS}
    ints = {key: _as_int(raw, key) for key in _INT_FIELDS}

    metadata = [
        Metadatum(
            attribute=_as_str(m, "attribute"),
            value=_as_str(m, "value"),
            unit=_as_str(m, "unit"),
        )
        for m in _as_list(raw, "metadata")
    ]

    permissions: list[UserPermission] = []
    for p in _as_list(raw, "userPermissions"):
        perm = p.get("permission")
        if perm is not None and not isinstance(perm, str):
            msg = f"Permission must be a string or null, got {type(perm).__name__}"
            raise DocumentError(msg)
        permissions.append(UserPermission(user=_as_str(p, "user"), permission=perm))

    return Document(
        id=strings["id"],
        path=strings["path"],
        label=strings["label"],
        creator=strings["creator"],
        file_type=strings["fileType"],
        date_created=ints["dateCreated"],
        date_modified=ints["dateModified"],
        file_size=ints["fileSize"],
        metadata=metadata,
        user_permissions=permissions,
    )


def parse_document(text: str | bytes) -> Document:
    """Decode a JSON document.

    Raises
    ------
    DocumentError
        If *text* is not valid JSON or does not have the document shape.
    """
    try:
        raw = json.loads(text)
    except (ValueError, TypeError) as exc:
        msg = f"Invalid document JSON: {exc}"
        raise DocumentError(msg) from exc
    return document_from_dict(raw)


def documents_equal(one: Document, two: Document) -> bool:
    """Return True when both documents describe the same catalog state."""
    # User-modifiable fields, most likely to differ first.
    if one.date_modified != two.date_modified:
        return False
    if one.file_size != two.file_size:
        return False
    if one.path != two.path:
        return False
    if one.label != two.label:
        return False

    # Fields which shouldn't change for the same object.
    if one.id != two.id:
        return False
    if one.creator != two.creator:
        return False
    if one.file_type != two.file_type:
        return False
    if one.date_created != two.date_created:
        return False

    # Set comparison; duplicates collapse.
    if set(one.metadata) != set(two.metadata):
        return False
    return set(one.user_permissions) == set(two.user_permissions)
