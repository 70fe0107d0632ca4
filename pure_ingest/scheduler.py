"""Sync scheduler: runs the product and transaction syncs on fixed intervals.

No external scheduler library is required. The loop is an explicit state
machine driven by one selection primitive, ``_wait_for_trigger``, which
blocks on the stop event until the earliest timer is due.

Typical usage via the CLI::

    pure-ingest run

Or import directly::

    from pure_ingest.scheduler import SyncScheduler
    scheduler = SyncScheduler.from_config(config)
    scheduler.install_signal_handlers()
    scheduler.run()  # blocks until SIGINT/SIGTERM

Timing rules:
  - Both timers are due at start; product sync goes first.
  - When both are due at once, product sync wins.
  - Handlers run to completion. A handler exception is logged and the loop
    returns to IDLE.
  - After a run, the timer advances by whole intervals until it is in the
    future, so ticks missed during a long run collapse into one.
  - Shutdown is only observed between runs.
"""

from __future__ import annotations

import logging
import math
import platform
import signal
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from pure_ingest.config import AppConfig

log = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING_PRODUCT_SYNC = "running_product_sync"
    RUNNING_TRANSACTION_SYNC = "running_transaction_sync"
    SHUTTING_DOWN = "shutting_down"


class Trigger(str, Enum):
    PRODUCT = "product"
    TRANSACTION = "transaction"
    CANCEL = "cancel"


def next_due(due: float, interval: float, now: float) -> float:
    """Advance ``due`` by whole ``interval``s until it is strictly after ``now``."""
    if due > now:
        return due
    return due + (math.floor((now - due) / interval) + 1) * interval


class SyncScheduler:
    """Two-timer sync loop.

    Parameters
    ----------
    product_sync, transaction_sync:
        Zero-argument callables. Return values are ignored.
    product_interval, transaction_interval:
        Seconds between runs. Defaults 3600 and 21600.
    stop_event:
        Object with ``is_set()``, ``set()`` and ``wait(timeout)``; a fresh
        ``threading.Event`` when *None*.
    clock:
        Monotonic seconds source, ``time.monotonic`` by default.
    """

    def __init__(
        self,
        product_sync: Callable[[], Any],
        transaction_sync: Callable[[], Any],
        product_interval: float = 3600.0,
        transaction_interval: float = 21600.0,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if product_interval <= 0 or transaction_interval <= 0:
            raise ValueError("Sync intervals must be > 0 seconds.")
        self._product_sync = product_sync
        self._transaction_sync = transaction_sync
        self.product_interval = product_interval
        self.transaction_interval = transaction_interval
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._clock = clock
        self.state = SchedulerState.IDLE
        self._next_product = 0.0
        self._next_transaction = 0.0

    @classmethod
    def from_config(
        cls, config: "AppConfig", db_path: Optional[str] = None, **kwargs: Any
    ) -> "SyncScheduler":
        """Wire the two sync stages with the configured intervals."""
        from pure_ingest.pipeline.product_sync import ProductSyncStage
        from pure_ingest.pipeline.transaction_sync import TransactionSyncStage

        return cls(
            product_sync=lambda: ProductSyncStage(config, db_path=db_path).run(),
            transaction_sync=lambda: TransactionSyncStage(config, db_path=db_path).run(),
            product_interval=config.sync.product_interval_seconds,
            transaction_interval=config.sync.transaction_interval_seconds,
            **kwargs,
        )

    # ── Cancellation ──────────────────────────────────────────────────────────

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current run, if any."""
        self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT (and SIGTERM off Windows) to ``request_shutdown``."""

        def _shutdown(signum, frame):  # noqa: ANN001
            log.info("Signal %d received, stopping scheduler.", signum)
            self.request_shutdown()

        signal.signal(signal.SIGINT, _shutdown)
        if platform.system() != "Windows":
            signal.signal(signal.SIGTERM, _shutdown)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _wait_for_trigger(self) -> Trigger:
        """Block until a timer is due or shutdown is requested."""
        while True:
            if self._stop_event.is_set():
                return Trigger.CANCEL
            now = self._clock()
            if self._next_product <= now:
                return Trigger.PRODUCT
            if self._next_transaction <= now:
                return Trigger.TRANSACTION
            timeout = min(self._next_product, self._next_transaction) - now
            if self._stop_event.wait(timeout=timeout):
                return Trigger.CANCEL

    def _run_handler(self, state: SchedulerState, handler: Callable[[], Any], label: str) -> None:
        self.state = state
        log.info("[%s] starting", label)
        try:
            handler()
            log.info("[%s] finished", label)
        except Exception as exc:
            log.error("[%s] failed: %s", label, exc, exc_info=True)
        finally:
            self.state = SchedulerState.IDLE

    # ── Main loop ─────────────────────────────────────────────────────────────

    def run(self) -> None:
        """Run until shutdown is requested."""
        start = self._clock()
        self._next_product = start
        self._next_transaction = start
        self.state = SchedulerState.IDLE
        log.info(
            "Scheduler started. product every %ss, transactions every %ss",
            self.product_interval, self.transaction_interval,
        )

        while True:
            trigger = self._wait_for_trigger()
            if trigger is Trigger.CANCEL:
                break

            if trigger is Trigger.PRODUCT:
                self._run_handler(
                    SchedulerState.RUNNING_PRODUCT_SYNC, self._product_sync, "product-sync"
                )
                self._next_product = next_due(
                    self._next_product, self.product_interval, self._clock()
                )
            else:
                self._run_handler(
                    SchedulerState.RUNNING_TRANSACTION_SYNC,
                    self._transaction_sync,
                    "transaction-sync",
                )
                self._next_transaction = next_due(
                    self._next_transaction, self.transaction_interval, self._clock()
                )

        self.state = SchedulerState.SHUTTING_DOWN
        log.info("Scheduler stopped.")
