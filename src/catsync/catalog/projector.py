"""Catalog projector: prefix → derived relations → per-object JSON rows.

All work happens inside a :class:`~catsync.infrastructure.catalog_db.ReadScope`.
The derived relations are ``TEMP`` tables that disappear when the scope is
rolled back.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from catsync.errors import CatalogError, TooManyResultsError
from catsync.infrastructure.catalog_db import ACCESS_OWN, ACCESS_READ, ACCESS_WRITE

if TYPE_CHECKING:
    from collections.abc import Iterator

    from catsync.infrastructure.catalog_db import ReadScope

logger = logging.getLogger(__name__)

_BASE_UUIDS_SQL = """\
SELECT meta.meta_id AS meta_id, lower(meta.meta_attr_value) AS id
FROM r_meta_main meta
WHERE meta.meta_attr_name = ?
  AND lower(meta.meta_attr_value) LIKE ? ESCAPE '\\'"""

_OBJECT_UUIDS_SQL = """\
SELECT map.object_id AS object_id, meta.id AS id
FROM r_objt_metamap map
JOIN temp.base_object_uuids meta ON map.meta_id = meta.meta_id"""

_PERMS_SQL = f"""\
SELECT object_id, json_group_array(json(perm)) AS user_permissions
FROM (
    SELECT a.object_id AS object_id,
           json_object(
               'user', u.user_name || '#' || u.zone_name,
               'permission', CASE a.access_type_id
                   WHEN {ACCESS_READ} THEN 'read'
                   WHEN {ACCESS_WRITE} THEN 'write'
                   WHEN {ACCESS_OWN} THEN 'own'
                   ELSE NULL
               END
           ) AS perm
    FROM r_objt_access a
    JOIN r_user_main u ON a.user_id = u.user_id
    WHERE a.object_id IN (SELECT object_id FROM temp.object_uuids)
    ORDER BY a.object_id, u.user_name, u.zone_name
)
GROUP BY object_id"""

_METADATA_SQL = """\
SELECT object_id, json_group_array(json(avu)) AS metadata
FROM (
    SELECT map.object_id AS object_id,
           json_object(
               'attribute', m.meta_attr_name,
               'value', m.meta_attr_value,
               'unit', m.meta_attr_unit
           ) AS avu
    FROM r_objt_metamap map
    JOIN r_meta_main m ON map.meta_id = m.meta_id
    WHERE m.meta_attr_name <> ?
      AND map.object_id IN (SELECT object_id FROM temp.object_uuids)
    ORDER BY map.object_id, m.meta_attr_name, m.meta_attr_value, m.meta_attr_unit
)
GROUP BY object_id"""

# Replicas share a data_id; the one modified last wins.
_DATA_OBJECTS_SQL = """\
SELECT u.id AS id,
       json_object(
           'id', u.id,
           'path', CASE WHEN c.coll_name = '/' THEN '/' || d.data_name
                        ELSE c.coll_name || '/' || d.data_name END,
           'label', d.data_name,
           'creator', d.data_owner_name || '#' || d.data_owner_zone,
           'fileType', d.data_type_name,
           'dateCreated', CAST(d.create_ts AS INTEGER) * 1000,
           'dateModified', CAST(d.modify_ts AS INTEGER) * 1000,
           'fileSize', d.data_size,
           'metadata', json(coalesce(md.metadata, '[]')),
           'userPermissions', json(coalesce(p.user_permissions, '[]'))
       ) AS document
FROM temp.object_uuids u
JOIN (
    SELECT data_id, coll_id, data_name, data_type_name, data_size,
           data_owner_name, data_owner_zone, create_ts, max(modify_ts) AS modify_ts
    FROM r_data_main
    WHERE data_id IN (SELECT object_id FROM temp.object_uuids)
    GROUP BY data_id
) d ON d.data_id = u.object_id
JOIN r_coll_main c ON c.coll_id = d.coll_id
LEFT JOIN temp.object_perms p ON p.object_id = u.object_id
LEFT JOIN temp.object_metadata md ON md.object_id = u.object_id
ORDER BY u.id"""

# The label is the last path segment of coll_name.
_COLLECTIONS_SQL = """\
SELECT u.id AS id,
       json_object(
           'id', u.id,
           'path', c.coll_name,
           'label', replace(c.coll_name, rtrim(c.coll_name, replace(c.coll_name, '/', '')), ''),
           'creator', c.coll_owner_name || '#' || c.coll_owner_zone,
           'fileType', NULL,
           'dateCreated', CAST(c.create_ts AS INTEGER) * 1000,
           'dateModified', CAST(c.modify_ts AS INTEGER) * 1000,
           'fileSize', 0,
           'metadata', json(coalesce(md.metadata, '[]')),
           'userPermissions', json(coalesce(p.user_permissions, '[]'))
       ) AS document
FROM temp.object_uuids u
JOIN r_coll_main c ON c.coll_id = u.object_id
LEFT JOIN temp.object_perms p ON p.object_id = u.object_id
LEFT JOIN temp.object_metadata md ON md.object_id = u.object_id
ORDER BY u.id"""


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so *value* matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CatalogProjector:
    """Builds the identifier, permission and metadata relations for a prefix.

    Call :meth:`project` first, then :meth:`build_permissions` and
    :meth:`build_metadata`; after that :meth:`file_rows` and
    :meth:`folder_rows` yield ``(id, json)`` pairs.
    """

    def __init__(
        self,
        scope: ReadScope,
        *,
        max_in_prefix: int,
        uuid_attribute: str = "ipc_UUID",
    ) -> None:
        self._scope = scope
        self._max_in_prefix = max_in_prefix
        self._uuid_attribute = uuid_attribute
        self._built: set[str] = set()

    def project(self, prefix: str) -> int:
        """Build the identifier relation and return its row count.

        The count may include stale metadata that is no longer attached to
        any object.

        Raises
        ------
        TooManyResultsError
            If the count exceeds ``max_in_prefix``.
        """
        count = self._scope.create_temp_table(
            "base_object_uuids",
            _BASE_UUIDS_SQL,
            (self._uuid_attribute, escape_like(prefix.lower()) + "%"),
        )
        if count > self._max_in_prefix:
            raise TooManyResultsError(count, prefix, "catalog")

        logger.debug(
            "Got %d rows for prefix %s (note that this may include stale unused metadata)",
            count,
            prefix,
        )
        self._scope.create_temp_table("object_uuids", _OBJECT_UUIDS_SQL)
        self._built.add("object_uuids")
        return count

    def build_permissions(self) -> int:
        self._require("object_uuids")
        count = self._scope.create_temp_table("object_perms", _PERMS_SQL)
        self._built.add("object_perms")
        logger.debug("Got %d rows for perms", count)
        return count

    def build_metadata(self) -> int:
        self._require("object_uuids")
        count = self._scope.create_temp_table(
            "object_metadata", _METADATA_SQL, (self._uuid_attribute,)
        )
        self._built.add("object_metadata")
        logger.debug("Got %d rows for metadata", count)
        return count

    def file_rows(self) -> Iterator[tuple[str, str]]:
        """Yield ``(id, json)`` for every data object under the prefix."""
        return self._rows(_DATA_OBJECTS_SQL, "data-objects")

    def folder_rows(self) -> Iterator[tuple[str, str]]:
        """Yield ``(id, json)`` for every collection under the prefix."""
        return self._rows(_COLLECTIONS_SQL, "collections")

    def _require(self, *relations: str) -> None:
        missing = [r for r in relations if r not in self._built]
        if missing:
            msg = f"Relations not built yet: {', '.join(missing)}"
            raise CatalogError(msg)

    def _rows(self, sql: str, what: str) -> Iterator[tuple[str, str]]:
        self._require("object_uuids", "object_perms", "object_metadata")
        cursor = self._scope.query(sql, what=what)
        return _iterate(cursor, what)


def _iterate(cursor: sqlite3.Cursor, what: str) -> Iterator[tuple[str, str]]:
    try:
        for row in cursor:
            yield row["id"], row["document"]
    except sqlite3.Error as exc:
        msg = f"Failed reading {what}: {exc}"
        raise CatalogError(msg) from exc
    finally:
        cursor.close()
