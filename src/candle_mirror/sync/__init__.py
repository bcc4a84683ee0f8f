"""Reconciliation and in-memory range queries."""

from candle_mirror.sync.reconciler import Reconciler
from candle_mirror.sync.working_set import WorkingSetCache

__all__ = ["Reconciler", "WorkingSetCache"]
