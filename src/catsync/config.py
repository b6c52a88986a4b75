"""Configuration: YAML file → frozen dataclasses passed into every pass."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import yaml

from catsync.errors import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

CATEGORIES = ("file", "folder")

_DEFAULT_INDICES = {"file": "data-files", "folder": "data-folders"}


@dataclass(frozen=True)
class CatalogConfig:
    """Where the catalog database lives."""

    path: str


@dataclass(frozen=True)
class SearchConfig:
    """Search index endpoint and the concrete index behind each category."""

    url: str
    indices: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_INDICES))
    user: str = ""
    password_env: str = ""
    timeout: float = 30.0

    def password(self) -> str:
        """Resolve the password from the environment ("" when unset)."""
        if not self.password_env:
            return ""
        return os.environ.get(self.password_env, "")


@dataclass(frozen=True)
class ReindexConfig:
    """Limits and knobs for a reconciliation pass."""

    max_in_prefix: int = 10000
    batch_size: int = 1000
    prefix_length: int = 2
    uuid_attribute: str = "ipc_UUID"
    interval: float = 86400.0


@dataclass(frozen=True)
class Config:
    """Top-level configuration."""

    catalog: CatalogConfig
    search: SearchConfig
    reindex: ReindexConfig = field(default_factory=ReindexConfig)


def _section(raw: dict[str, Any], name: str, *, required: bool = True) -> dict[str, Any]:
    value = raw.get(name)
    if value is None:
        if required:
            msg = f"Config requires a '{name}' section."
            raise ConfigError(msg)
        return {}
    if not isinstance(value, dict):
        msg = f"Config section '{name}' must be a mapping."
        raise ConfigError(msg)
    return value


def _positive_int(raw: dict[str, Any], key: str, default: int) -> int:
    raw_value = raw.get(key, default)
    if isinstance(raw_value, bool) or (
        isinstance(raw_value, float) and not raw_value.is_integer()
    ):
        msg = f"reindex.{key} must be an integer, got {raw_value!r}."
        raise ConfigError(msg)
    try:
        value = int(raw_value)
    except (TypeError, ValueError) as exc:
        msg = f"reindex.{key} must be an integer."
        raise ConfigError(msg) from exc
    if value <= 0:
        msg = f"reindex.{key} must be positive, got {value}."
        raise ConfigError(msg)
    return value


def _parse_search(raw: dict[str, Any]) -> SearchConfig:
    url = str(raw.get("url", "")).rstrip("/")
    if not url:
        msg = "Search config requires 'url' field."
        raise ConfigError(msg)

    indices = dict(_DEFAULT_INDICES)
    raw_indices = raw.get("indices") or {}
    if not isinstance(raw_indices, dict):
        msg = "search.indices must map categories to index names."
        raise ConfigError(msg)
    for category, name in raw_indices.items():
        if category not in CATEGORIES:
            msg = f"Unknown category in search.indices: {category!r}. Use 'file' or 'folder'."
            raise ConfigError(msg)
        indices[category] = str(name)
    if indices["file"] == indices["folder"]:
        msg = "search.indices must name a distinct index per category."
        raise ConfigError(msg)

    try:
        timeout = float(raw.get("timeout", 30.0))
    except (TypeError, ValueError) as exc:
        msg = "search.timeout must be a number."
        raise ConfigError(msg) from exc

    return SearchConfig(
        url=url,
        indices=indices,
        user=str(raw.get("user", "") or ""),
        password_env=str(raw.get("password_env", "") or ""),
        timeout=timeout,
    )


def _parse_reindex(raw: dict[str, Any]) -> ReindexConfig:
    defaults = ReindexConfig()
    prefix_length = _positive_int(raw, "prefix_length", defaults.prefix_length)
    if prefix_length > 8:
        msg = f"reindex.prefix_length must be between 1 and 8, got {prefix_length}."
        raise ConfigError(msg)

    uuid_attribute = str(raw.get("uuid_attribute", defaults.uuid_attribute) or "")
    if not uuid_attribute:
        msg = "reindex.uuid_attribute must not be empty."
        raise ConfigError(msg)

    try:
        interval = float(raw.get("interval", defaults.interval))
    except (TypeError, ValueError) as exc:
        msg = "reindex.interval must be a number of seconds."
        raise ConfigError(msg) from exc

    return ReindexConfig(
        max_in_prefix=_positive_int(raw, "max_in_prefix", defaults.max_in_prefix),
        batch_size=_positive_int(raw, "batch_size", defaults.batch_size),
        prefix_length=prefix_length,
        uuid_attribute=uuid_attribute,
        interval=interval,
    )


def parse_config(raw: dict[str, Any]) -> Config:
    """Validate a decoded configuration mapping.

    Raises
    ------
    ConfigError
        If required sections or fields are missing or malformed.
    """
    if not isinstance(raw, dict):
        msg = "Config must be a mapping."
        raise ConfigError(msg)

    catalog_raw = _section(raw, "catalog")
    catalog_path = str(catalog_raw.get("path", "") or "")
    if not catalog_path:
        msg = "Catalog config requires 'path' field."
        raise ConfigError(msg)

    return Config(
        catalog=CatalogConfig(path=catalog_path),
        search=_parse_search(_section(raw, "search")),
        reindex=_parse_reindex(_section(raw, "reindex", required=False)),
    )


def load_config(path: Path) -> Config:
    """Read and validate a YAML configuration file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file {path}: {exc}"
        raise ConfigError(msg) from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path}: {exc}"
        raise ConfigError(msg) from exc
    return parse_config(data)
