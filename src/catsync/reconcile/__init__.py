"""Reconcile domain — classification, per-prefix passes and full sweeps.

``catsync.reconcile.driver`` is not re-exported; import it directly::

    from catsync.reconcile.driver import reindex_all
"""

from catsync.reconcile.classify import Classification, classify
from catsync.reconcile.orchestrator import PassStats, reindex_prefix

__all__ = [
    "Classification",
    "PassStats",
    "classify",
    "reindex_prefix",
]
