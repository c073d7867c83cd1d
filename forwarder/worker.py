# FILE: forwarder/worker.py
from __future__ import annotations
import time, logging, threading
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple
from prometheus_client import Counter, Histogram, Gauge
from .errors import ForwarderError
from .materializer import RecordMaterializer
from .marker import DeliveryMarker
from .models import ItemLogRow
from .selector import RowSelector
from .settings import Settings, SettingsCell
from .stats import AggregateRefresher

logger = logging.getLogger("forwarder.worker")

# -------- Metrics --------
CYCLES = Counter("forwarder_cycles_total", "forwarding cycles", ["outcome"])
FAILURES = Counter("forwarder_cycle_failures_total", "failed cycles", ["stage"])
LAT = Histogram("forwarder_cycle_seconds", "cycle latency", buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5))
STALLED = Gauge("forwarder_locked_skip_cycles", "consecutive cycles the oldest unsent row was skipped as locked")

# longest stretch the loop sleeps before re-reading settings
SLEEP_SLICE_S = 0.25


class State(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    MATERIALIZING = "materializing"
    MARKING = "marking"
    REFRESHING = "refreshing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class Outcome(str, Enum):
    IDLE = "idle"            # nothing to send
    DELIVERED = "delivered"  # materialized and marked; error set if the stats refresh failed
    NOOP = "noop"            # another worker marked the row first
    FAILED = "failed"        # row stays unsent and is retried next cycle


@dataclass
class CycleResult:
    outcome: Outcome
    stage: Optional[State] = None
    row_id: Optional[int] = None
    path: Optional[Path] = None
    error: Optional[BaseException] = None
    refreshed: Tuple[date, ...] = field(default_factory=tuple)


class Forwarder:
    """Select -> materialize -> mark -> refresh, one row per cycle, until stopped."""

    def __init__(self, cell: SettingsCell, selector: RowSelector, materializer: RecordMaterializer,
                 marker: DeliveryMarker, refresher: AggregateRefresher,
                 clock: Callable[[], date] = date.today):
        self._cell = cell
        self._selector = selector
        self._materializer = materializer
        self._marker = marker
        self._refresher = refresher
        self._clock = clock
        self.state = State.IDLE
        self._stall_id: Optional[int] = None
        self._stall_n = 0
        self._stall_warned = False

    def _enter(self, state: State):
        self.state = state

    def _failed(self, stage: State, e: BaseException, row_id: Optional[int]) -> CycleResult:
        if row_id is None and isinstance(e, ForwarderError):
            row_id = e.row_id
        FAILURES.labels(stage=stage.value).inc()
        logger.error("cycle failed while %s: %s", stage.value, e, exc_info=e,
                     extra={"stage": stage.value, "row_id": row_id})
        return CycleResult(Outcome.FAILED, stage=stage, row_id=row_id, error=e)

    # -------- One cycle --------
    def run_cycle(self) -> CycleResult:
        # one snapshot for the whole cycle; a reload lands on the next one
        s = self._cell.current
        t0 = time.perf_counter()
        try:
            res = self._cycle(s)
        finally:
            LAT.observe(time.perf_counter() - t0)
        CYCLES.labels(outcome=res.outcome.value).inc()
        return res

    def _cycle(self, s: Settings) -> CycleResult:
        logger.debug("tick", extra={"interval_ms": s.INTERVAL_MS, "table": s.ITEM_LOG_TABLE})
        self._enter(State.SELECTING)
        try:
            row = self._selector.select_oldest_unsent(s)
        except Exception as e:
            return self._failed(State.SELECTING, e, None)
        self._watch_stall(row, s)
        if row is None:
            return CycleResult(Outcome.IDLE, stage=State.SELECTING)

        self._enter(State.MATERIALIZING)
        try:
            path = self._materializer.materialize(row, s)
        except Exception as e:
            return self._failed(State.MATERIALIZING, e, row.id)

        self._enter(State.MARKING)
        try:
            marked = self._marker.mark_sent(row.id, s)
        except Exception as e:
            return self._failed(State.MARKING, e, row.id)
        if not marked:
            logger.warning("row already marked sent elsewhere; stats not refreshed",
                           extra={"row_id": row.id, "path": str(path)})
            return CycleResult(Outcome.NOOP, stage=State.MARKING, row_id=row.id, path=path)

        self._enter(State.REFRESHING)
        refreshed, error = [], None
        for day in sorted({row.stat_date, self._clock()}):
            try:
                self._refresher.refresh(day, s)
            except Exception as e:
                # the mark stands; the next delivery for this day recomputes the counters
                self._failed(State.REFRESHING, e, row.id)
                error = error or e
                continue
            refreshed.append(day)
        if error is None:
            logger.info("row forwarded", extra={"row_id": row.id, "path": str(path)})
        return CycleResult(Outcome.DELIVERED, stage=State.REFRESHING, row_id=row.id, path=path,
                           error=error, refreshed=tuple(refreshed))

    def _watch_stall(self, row: Optional[ItemLogRow], s: Settings):
        limit = s.STALL_WARN_CYCLES
        if limit <= 0:
            return
        try:
            oldest = self._selector.oldest_unsent_id(s)
        except ForwarderError as e:
            logger.warning("stalled-row check skipped: %s", e)
            return
        skipped = oldest is not None and (row is None or oldest < row.id)
        if not skipped:
            self._stall_id, self._stall_n, self._stall_warned = None, 0, False
        elif oldest == self._stall_id:
            self._stall_n += 1
        else:
            self._stall_id, self._stall_n, self._stall_warned = oldest, 1, False
        STALLED.set(self._stall_n)
        if self._stall_n >= limit and not self._stall_warned:
            self._stall_warned = True
            logger.warning("oldest unsent row is locked by another transaction and has been skipped "
                           "for %s consecutive cycles", self._stall_n, extra={"row_id": self._stall_id})

    # -------- Loop --------
    def _sleep(self, stop: threading.Event) -> bool:
        """Wait out the interval, re-reading settings so a changed INTERVAL_MS applies mid-sleep.

        Returns True when stop was requested.
        """
        start = time.monotonic()
        while True:
            remaining = self._cell.poll().interval_s - (time.monotonic() - start)
            if remaining <= 0:
                return stop.is_set()
            if stop.wait(min(remaining, SLEEP_SLICE_S)):
                return True

    def run(self, stop: threading.Event):
        while not stop.is_set():
            self._cell.poll()
            self.run_cycle()
            self._enter(State.SLEEPING)
            if self._sleep(stop):
                break
        self._enter(State.STOPPED)
        logger.info("forwarder stopped")
