"""
Order Store - Per-order State Storage

Holds everything the pipeline knows about an order: subject, candidate
pool, weights, selection, time adjustments, bracket state and adjustment
runs. Writers for one order are serialised through `with_lock`; different
orders never contend.

This is an in-memory implementation. Production should back OrderStore
with a persistent database.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Optional

from valuation.adjustments.models import (
    AdjustmentRunResult,
    AdjustmentsBundle,
    CostBaseline,
    EngineSettings,
)
from valuation.comp_engine.models import (
    CompProperty,
    CompSelection,
    HiLoState,
    OrderWeights,
    SubjectProperty,
    TimeAdjustments,
)
from valuation.errors import NotFound


@dataclass
class OrderState:
    """Snapshot of one order. Replaced wholesale on every successful write."""

    order_id: str
    subject: SubjectProperty
    comps: list[CompProperty]
    weights: OrderWeights
    selection: CompSelection
    hilo: HiLoState
    engine_settings: EngineSettings
    cost_baseline: CostBaseline
    polygon: Optional[dict[str, Any]] = None
    time_adjustments: Optional[TimeAdjustments] = None
    # Latest run plus the run behind the current bundle, nothing older
    runs: dict[str, AdjustmentRunResult] = field(default_factory=dict)
    latest_run_id: Optional[str] = None
    bundle: Optional[AdjustmentsBundle] = None

    def comp(self, comp_id: str) -> CompProperty:
        """
        Look up a comp in the pool.

        Raises:
            NotFound: If the comp is not part of this order
        """
        for comp in self.comps:
            if comp.id == comp_id:
                return comp
        raise NotFound("comp", comp_id)

    def run(self, run_id: Optional[str] = None) -> AdjustmentRunResult:
        """
        Look up an adjustment run, the latest one by default.

        Raises:
            NotFound: If no such run exists
        """
        key = run_id or self.latest_run_id
        if key is None or key not in self.runs:
            raise NotFound("adjustment run", key or "latest")
        return self.runs[key]

    def with_run(self, run: AdjustmentRunResult, latest: bool = False) -> "OrderState":
        """
        Copy of the state holding `run`.

        Runs other than the latest and the one the bundle was applied from
        are dropped.
        """
        latest_run_id = run.run_id if latest else self.latest_run_id
        keep = {latest_run_id}
        if self.bundle is not None:
            keep.add(self.bundle.run.run_id)
        runs = {
            run_id: stored for run_id, stored in self.runs.items() if run_id in keep
        }
        runs[run.run_id] = run
        return replace(self, runs=runs, latest_run_id=latest_run_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "subject": self.subject.to_dict(),
            "comps": [comp.to_dict() for comp in self.comps],
            "polygon": self.polygon,
            "weights": self.weights.to_dict(),
            "selection": self.selection.to_dict(),
            "timeAdjustments": (
                self.time_adjustments.to_dict() if self.time_adjustments else None
            ),
            "hilo": self.hilo.to_dict(),
            "engineSettings": self.engine_settings.to_dict(),
            "latestRunId": self.latest_run_id,
            "runIds": sorted(self.runs),
            "bundleFingerprint": self.bundle.fingerprint if self.bundle else None,
        }


# =============================================================================
# Store Interface
# =============================================================================


class OrderStore(ABC):
    """
    Abstract storage for per-order state.

    Implementations must guarantee that code running inside
    `with_lock(order_id)` is the only writer for that order.
    """

    @abstractmethod
    def get(self, order_id: str) -> OrderState:
        """
        Return the current state of an order.

        Raises:
            NotFound: If the order does not exist
        """
        ...

    @abstractmethod
    def put(self, state: OrderState) -> None:
        """Store (create or replace) an order's state."""
        ...

    @abstractmethod
    def with_lock(self, order_id: str):
        """Context manager giving exclusive write access to one order."""
        ...

    def exists(self, order_id: str) -> bool:
        try:
            self.get(order_id)
        except NotFound:
            return False
        return True


# =============================================================================
# In-Memory Store
# =============================================================================


class InMemoryOrderStore(OrderStore):
    """Dictionary-backed store with one re-entrant lock per order."""

    def __init__(self) -> None:
        self._orders: dict[str, OrderState] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def get(self, order_id: str) -> OrderState:
        state = self._orders.get(order_id)
        if state is None:
            raise NotFound("order", order_id)
        return state

    def put(self, state: OrderState) -> None:
        self._orders[state.order_id] = state

    def _lock_for(self, order_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(order_id)
            if lock is None:
                lock = self._locks[order_id] = threading.RLock()
            return lock

    @contextmanager
    def with_lock(self, order_id: str) -> Iterator[None]:
        lock = self._lock_for(order_id)
        with lock:
            yield

    def order_ids(self) -> list[str]:
        return sorted(self._orders)

    def __len__(self) -> int:
        return len(self._orders)
