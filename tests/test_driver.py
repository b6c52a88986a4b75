"""Tests for catsync.reconcile.driver — prefix enumeration and subdivision."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from catsync.errors import CatalogError
from catsync.reconcile import driver
from catsync.reconcile.driver import child_prefixes, initial_prefixes, reindex_all

if TYPE_CHECKING:
    from collections.abc import Callable

    from catsync.config import Config
    from catsync.reconcile.orchestrator import PassStats
    from catsync.search.client import SearchClient
    from tests.conftest import CatalogBuilder, FakeIndex

FULL_ID = "a1000000-0000-0000-0000-000000000001"


class TestInitialPrefixes:
    """Tests for initial_prefixes()."""

    def test_length_one(self) -> None:
        assert initial_prefixes(1) == list("0123456789abcdef")

    def test_length_two(self) -> None:
        prefixes = initial_prefixes(2)
        assert len(prefixes) == 256
        assert prefixes[0] == "00"
        assert prefixes[-1] == "ff"

    @pytest.mark.parametrize("length", [0, 9])
    def test_out_of_range(self, length: int) -> None:
        with pytest.raises(ValueError, match="between 1 and 8"):
            initial_prefixes(length)


class TestChildPrefixes:
    """Tests for child_prefixes() subdivision."""

    def test_appends_hex_digit(self) -> None:
        children = child_prefixes("ab")
        assert len(children) == 16
        assert children[0] == "ab0"
        assert children[-1] == "abf"

    def test_lower_cases(self) -> None:
        assert child_prefixes("AB")[0] == "ab0"

    @pytest.mark.parametrize("prefix", ["abcdef01", "abcdef01-2345", "abcdef01-2345-6789"])
    def test_inserts_hyphen(self, prefix: str) -> None:
        assert child_prefixes(prefix)[0] == prefix + "-0"

    def test_after_hyphen(self) -> None:
        assert child_prefixes("abcdef01-")[0] == "abcdef01-0"

    def test_full_uuid_has_no_children(self) -> None:
        assert child_prefixes(FULL_ID) == []


class TestReindexAll:
    """Tests for reindex_all() sweeps."""

    def test_subdivides_overflowing_prefix(
        self,
        catalog: CatalogBuilder,
        fake_index: FakeIndex,
        search_client: SearchClient,
        make_config: Callable[..., Config],
    ) -> None:
        home = catalog.collection("/iplant/home/rods")
        catalog.data_object(home, "1.txt", uuid="a1000000-0000-0000-0000-000000000001")
        catalog.data_object(home, "2.txt", uuid="a1000000-0000-0000-0000-000000000002")
        catalog.data_object(home, "3.txt", uuid="a2000000-0000-0000-0000-000000000003")

        result = reindex_all(
            catalog.conn, search_client, make_config(max_in_prefix=2), prefixes=["a"]
        )

        assert result.ok
        assert result.subdivided == ["a"]
        assert result.passes == 16
        assert result.totals.dataobjects_added == 3
        assert len(fake_index.operations) == 3

    def test_full_id_overflow_recorded_as_failure(
        self,
        catalog: CatalogBuilder,
        search_client: SearchClient,
        make_config: Callable[..., Config],
    ) -> None:
        home = catalog.collection("/iplant/home/rods")
        catalog.data_object(home, "1.txt", uuid=FULL_ID)
        catalog.data_object(home, "2.txt", uuid=FULL_ID)

        result = reindex_all(
            catalog.conn, search_client, make_config(max_in_prefix=1), prefixes=[FULL_ID]
        )

        assert not result.ok
        assert FULL_ID in result.failed
        assert result.passes == 0

    def test_failure_does_not_stop_sweep(
        self,
        catalog: CatalogBuilder,
        search_client: SearchClient,
        config: Config,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real = driver.reindex_prefix

        def flaky(conn: object, client: object, prefix: str, cfg: Config) -> PassStats:
            if prefix == "b":
                raise CatalogError("catalog went away")
            return real(conn, client, prefix, cfg)  # type: ignore[arg-type]

        monkeypatch.setattr(driver, "reindex_prefix", flaky)

        result = reindex_all(catalog.conn, search_client, config, prefixes=["a", "b", "c"])

        assert result.passes == 2
        assert result.failed == {"b": "catalog went away"}

    def test_default_prefixes_from_config(
        self,
        catalog: CatalogBuilder,
        fake_index: FakeIndex,
        search_client: SearchClient,
        make_config: Callable[..., Config],
    ) -> None:
        result = reindex_all(catalog.conn, search_client, make_config(prefix_length=1))
        assert result.passes == 16
        assert len(fake_index.searches) == 16
