"""Infrastructure — catalog database connection, table layout and read scopes."""

from catsync.infrastructure.catalog_db import (
    ReadScope,
    create_catalog_schema,
    open_catalog,
    read_scope,
)

__all__ = [
    "ReadScope",
    "create_catalog_schema",
    "open_catalog",
    "read_scope",
]
