"""Catalog domain — projecting catalog objects into index documents."""

from catsync.catalog.projector import CatalogProjector

__all__ = ["CatalogProjector"]
