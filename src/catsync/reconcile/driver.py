"""Sweep the whole UUID space, splitting prefixes that hold too many objects."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from catsync.errors import CatsyncError, TooManyResultsError
from catsync.reconcile.orchestrator import PassStats, reindex_prefix

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Iterable

    from catsync.config import Config
    from catsync.search.client import SearchClient

logger = logging.getLogger(__name__)

HEX_DIGITS = "0123456789abcdef"

UUID_LENGTH = 36

# Offsets of the hyphens in the canonical 8-4-4-4-12 form.
_HYPHEN_POSITIONS = frozenset({8, 13, 18, 23})

_COUNTERS = (
    "rows",
    "documents",
    "processed",
    "dataobjects",
    "dataobjects_added",
    "dataobjects_updated",
    "dataobjects_removed",
    "colls",
    "colls_added",
    "colls_updated",
    "colls_removed",
    "operations",
)


def initial_prefixes(length: int) -> list[str]:
    """All lower-case hex prefixes of *length* characters (1..8)."""
    if not 1 <= length <= 8:
        msg = f"Prefix length must be between 1 and 8, got {length}"
        raise ValueError(msg)
    return ["".join(chars) for chars in itertools.product(HEX_DIGITS, repeat=length)]


def child_prefixes(prefix: str) -> list[str]:
    """The 16 prefixes one hex digit longer than *prefix*.

    Hyphens are inserted where a canonical UUID has them.  A prefix that is
    already a full UUID has no children.
    """
    prefix = prefix.lower()
    if len(prefix) >= UUID_LENGTH:
        return []
    if len(prefix) in _HYPHEN_POSITIONS:
        prefix += "-"
    return [prefix + digit for digit in HEX_DIGITS]


@dataclass
class SweepResult:
    """Aggregate of every pass in a sweep."""

    totals: PassStats = field(default_factory=PassStats)
    passes: int = 0
    subdivided: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def add(self, stats: PassStats) -> None:
        self.passes += 1
        for name in _COUNTERS:
            setattr(self.totals, name, getattr(self.totals, name) + getattr(stats, name))
        self.totals.elapsed += stats.elapsed

    @property
    def ok(self) -> bool:
        return not self.failed


def reindex_all(
    catalog: sqlite3.Connection,
    client: SearchClient,
    config: Config,
    prefixes: Iterable[str] | None = None,
) -> SweepResult:
    """Run a pass for every prefix, subdividing those that overflow.

    Failures of individual prefixes are logged and recorded; the sweep goes
    on with the next prefix.
    """
    if prefixes is None:
        prefixes = initial_prefixes(config.reindex.prefix_length)
    pending = deque(prefixes)
    result = SweepResult()

    while pending:
        prefix = pending.popleft()
        try:
            stats = reindex_prefix(catalog, client, prefix, config)
        except TooManyResultsError as exc:
            children = child_prefixes(prefix)
            if not children:
                logger.error("Prefix %s is a full id and still has %d results", prefix, exc.count)
                result.failed[prefix] = str(exc)
                continue
            logger.info(
                "Prefix %s has %d results in %s, subdividing", prefix, exc.count, exc.source
            )
            result.subdivided.append(prefix)
            pending.extendleft(reversed(children))
            continue
        except CatsyncError as exc:
            logger.error("Reindexing prefix %s failed: %s", prefix, exc)
            result.failed[prefix] = str(exc)
            continue
        result.add(stats)

    logger.info(
        "Sweep finished: %d passes, %d subdivided, %d failed. %s",
        result.passes,
        len(result.subdivided),
        len(result.failed),
        result.totals.summary(),
    )
    return result
