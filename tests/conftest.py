"""Shared test fixtures for catsync: a sqlite catalog and an in-memory index."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from catsync.config import CatalogConfig, Config, ReindexConfig, SearchConfig
from catsync.infrastructure.catalog_db import (
    ACCESS_OWN,
    create_catalog_schema,
    open_catalog,
)
from catsync.search.client import SearchClient

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

INDICES = {"file": "data-files", "folder": "data-folders"}

BASE_URL = "http://index.test"


class CatalogBuilder:
    """Populates a catalog database with collections, data objects and AVUs.

    Rows go in through *writer*; *conn* is the read-only connection the
    code under test gets.
    """

    def __init__(
        self, writer: sqlite3.Connection, conn: sqlite3.Connection, path: Path
    ) -> None:
        self.writer = writer
        self.conn = conn
        self.path = path
        self._next_id = 10000
        self._next_meta = 1
        self._users: dict[str, int] = {}

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def user(self, name: str, zone: str = "iplant") -> int:
        key = f"{name}#{zone}"
        if key not in self._users:
            user_id = self._new_id()
            self.writer.execute(
                "INSERT INTO r_user_main (user_id, user_name, zone_name) VALUES (?, ?, ?)",
                (user_id, name, zone),
            )
            self._users[key] = user_id
        return self._users[key]

    def avu(self, object_id: int, attr: str, value: str, unit: str | None = None) -> int:
        meta_id = self._next_meta
        self._next_meta += 1
        self.writer.execute(
            "INSERT INTO r_meta_main (meta_id, meta_attr_name, meta_attr_value, meta_attr_unit) "
            "VALUES (?, ?, ?, ?)",
            (meta_id, attr, value, unit),
        )
        self.writer.execute(
            "INSERT INTO r_objt_metamap (object_id, meta_id) VALUES (?, ?)",
            (object_id, meta_id),
        )
        return meta_id

    def grant(self, object_id: int, user: str, access_type: int, zone: str = "iplant") -> None:
        self.writer.execute(
            "INSERT INTO r_objt_access (object_id, user_id, access_type_id) VALUES (?, ?, ?)",
            (object_id, self.user(user, zone), access_type),
        )

    def collection(
        self,
        coll_name: str,
        *,
        uuid: str | None = None,
        owner: str = "rods",
        create_ts: int = 1500000000,
        modify_ts: int = 1500000000,
    ) -> int:
        coll_id = self._new_id()
        self.writer.execute(
            "INSERT INTO r_coll_main (coll_id, coll_name, coll_owner_name, coll_owner_zone, "
            "create_ts, modify_ts) VALUES (?, ?, ?, ?, ?, ?)",
            (coll_id, coll_name, owner, "iplant", f"{create_ts:011d}", f"{modify_ts:011d}"),
        )
        if uuid is not None:
            self.avu(coll_id, "ipc_UUID", uuid)
            self.grant(coll_id, owner, ACCESS_OWN)
        return coll_id

    def data_object(
        self,
        coll_id: int,
        name: str,
        *,
        uuid: str | None = None,
        owner: str = "rods",
        size: int = 1024,
        data_type: str | None = "generic",
        create_ts: int = 1500000000,
        modify_ts: int = 1500000000,
        replicas: int = 1,
    ) -> int:
        data_id = self._new_id()
        for repl in range(replicas):
            self.writer.execute(
                "INSERT INTO r_data_main (data_id, coll_id, data_name, data_repl_num, "
                "data_type_name, data_size, data_owner_name, data_owner_zone, create_ts, "
                "modify_ts) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    data_id,
                    coll_id,
                    name,
                    repl,
                    data_type,
                    size,
                    owner,
                    "iplant",
                    f"{create_ts:011d}",
                    f"{modify_ts + repl:011d}",
                ),
            )
        if uuid is not None:
            self.avu(data_id, "ipc_UUID", uuid)
            self.grant(data_id, owner, ACCESS_OWN)
        return data_id


class FakeIndex:
    """In-memory stand-in for the search index behind ``httpx.MockTransport``."""

    def __init__(self, indices: dict[str, str] | None = None) -> None:
        self.indices = dict(indices or INDICES)
        self.docs: dict[str, dict[str, Any]] = {name: {} for name in self.indices.values()}
        self.bulk_requests: list[list[tuple[str, str, str]]] = []
        self.searches: list[dict[str, Any]] = []
        self.health_status = "green"
        self.fail_bulk = False
        self.total_override: int | None = None

    # -- seeding -----------------------------------------------------------

    def put(self, category_or_index: str, doc_id: str, source: Any) -> None:
        index = self.indices.get(category_or_index, category_or_index)
        self.docs.setdefault(index, {})[doc_id] = source

    def get(self, category: str, doc_id: str) -> Any:
        return self.docs[self.indices[category]].get(doc_id)

    @property
    def operations(self) -> list[tuple[str, str, str]]:
        return [op for batch in self.bulk_requests for op in batch]

    # -- transport ---------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/_cluster/health":
            timed_out = self.health_status == "red"
            return httpx.Response(200, json={"status": self.health_status, "timed_out": timed_out})
        if path.endswith("/_search"):
            names = path.strip("/").split("/")[0].split(",")
            return self._search(names, json.loads(request.content))
        if path == "/_bulk":
            return self._bulk(request.content.decode("utf-8"))
        return httpx.Response(404, json={"error": f"no route for {path}"})

    def _search(self, names: list[str], body: dict[str, Any]) -> httpx.Response:
        self.searches.append(body)
        prefixes = [
            clause["prefix"]["id"] for clause in body["query"]["bool"]["should"]
        ]
        matches: list[tuple[str, dict[str, Any]]] = []
        for name in names:
            for doc_id, source in self.docs.get(name, {}).items():
                key = source.get("id", doc_id) if isinstance(source, dict) else doc_id
                if not isinstance(key, str):
                    key = doc_id
                if any(key.startswith(p) for p in prefixes):
                    matches.append((key, {"_index": name, "_id": doc_id, "_source": source}))
        matches.sort(key=lambda pair: pair[0])
        hits = [hit for _key, hit in matches[: body["size"]]]
        total = len(matches) if self.total_override is None else self.total_override
        return httpx.Response(
            200,
            json={"hits": {"total": {"value": total, "relation": "eq"}, "hits": hits}},
        )

    def _bulk(self, payload: str) -> httpx.Response:
        if self.fail_bulk:
            return httpx.Response(500, json={"error": "bulk rejected"})
        lines = payload.splitlines()
        batch: list[tuple[str, str, str]] = []
        items: list[dict[str, Any]] = []
        i = 0
        while i < len(lines):
            action = json.loads(lines[i])
            i += 1
            if "index" in action:
                meta = action["index"]
                self.docs.setdefault(meta["_index"], {})[meta["_id"]] = json.loads(lines[i])
                i += 1
                batch.append(("index", meta["_index"], meta["_id"]))
                items.append({"index": {"_id": meta["_id"], "status": 200, "result": "updated"}})
            else:
                meta = action["delete"]
                existed = self.docs.get(meta["_index"], {}).pop(meta["_id"], None) is not None
                batch.append(("delete", meta["_index"], meta["_id"]))
                items.append({
                    "delete": {
                        "_id": meta["_id"],
                        "status": 200 if existed else 404,
                        "result": "deleted" if existed else "not_found",
                    },
                })
        self.bulk_requests.append(batch)
        return httpx.Response(200, json={"errors": False, "items": items})

    def client(self) -> SearchClient:
        return SearchClient(BASE_URL, transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def catalog(tmp_path: Path) -> Iterator[CatalogBuilder]:
    """An empty catalog database with the full table layout."""
    db_path = tmp_path / "icat.db"
    writer = open_catalog(db_path, writable=True)
    create_catalog_schema(writer)
    conn = open_catalog(db_path)
    yield CatalogBuilder(writer, conn, db_path)
    conn.close()
    writer.close()


@pytest.fixture()
def fake_index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture()
def search_client(fake_index: FakeIndex) -> Iterator[SearchClient]:
    client = fake_index.client()
    yield client
    client.close()


@pytest.fixture()
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory for a :class:`Config` pointing at the test catalog."""

    def _make(**reindex: Any) -> Config:
        return Config(
            catalog=CatalogConfig(path=str(tmp_path / "icat.db")),
            search=SearchConfig(url=BASE_URL, indices=dict(INDICES)),
            reindex=ReindexConfig(**reindex),
        )

    return _make


@pytest.fixture()
def config(make_config: Callable[..., Config]) -> Config:
    return make_config()
