"""Tests for the two-timer sync scheduler, driven by a fake clock."""

from __future__ import annotations

import threading

import pytest

from pure_ingest.config import AppConfig, SyncConfig
from pure_ingest.scheduler import SchedulerState, SyncScheduler, next_due


class FakeClock:
    """Clock and stop event in one: ``wait(timeout)`` jumps time forward."""

    def __init__(self) -> None:
        self.now = 0.0
        self._stopped = False

    def __call__(self) -> float:
        return self.now

    def is_set(self) -> bool:
        return self._stopped

    def set(self) -> None:
        self._stopped = True

    def wait(self, timeout=None) -> bool:
        if not self._stopped and timeout is not None:
            self.now += timeout
        return self._stopped


def _scheduler(clock, product, transaction, product_interval=10.0, transaction_interval=25.0):
    return SyncScheduler(
        product_sync=product,
        transaction_sync=transaction,
        product_interval=product_interval,
        transaction_interval=transaction_interval,
        stop_event=clock,
        clock=clock,
    )


class TestTimers:
    def test_firing_order_and_product_wins_ties(self):
        clock = FakeClock()
        calls: list[tuple[str, float]] = []

        def record(name):
            def _handler():
                calls.append((name, clock.now))
                if len(calls) == 9:
                    clock.set()
            return _handler

        _scheduler(clock, record("P"), record("T")).run()

        assert calls == [
            ("P", 0.0), ("T", 0.0),
            ("P", 10.0), ("P", 20.0), ("T", 25.0),
            ("P", 30.0), ("P", 40.0),
            ("P", 50.0), ("T", 50.0),
        ]

    def test_missed_ticks_coalesce(self):
        clock = FakeClock()
        product_times: list[float] = []

        def slow_product():
            product_times.append(clock.now)
            clock.now += 35.0
            if len(product_times) == 3:
                clock.set()

        _scheduler(clock, slow_product, lambda: None, transaction_interval=1000.0).run()

        assert product_times == [0.0, 40.0, 80.0]

    @pytest.mark.parametrize(
        "due, interval, now, expected",
        [
            (0.0, 10.0, 0.0, 10.0),
            (0.0, 10.0, 9.9, 10.0),
            (0.0, 10.0, 10.0, 20.0),
            (0.0, 10.0, 35.0, 40.0),
            (50.0, 10.0, 20.0, 50.0),
        ],
    )
    def test_next_due(self, due, interval, now, expected):
        assert next_due(due, interval, now) == expected


class TestStateAndErrors:
    def test_handler_exception_does_not_stop_the_loop(self):
        clock = FakeClock()
        seen: list[str] = []

        def failing_product():
            seen.append("P")
            raise RuntimeError("boom")

        def transaction():
            seen.append("T")
            clock.set()

        scheduler = _scheduler(clock, failing_product, transaction)
        scheduler.run()

        assert seen == ["P", "T"]
        assert scheduler.state is SchedulerState.SHUTTING_DOWN

    def test_state_reflects_running_handler(self):
        clock = FakeClock()
        states: list[SchedulerState] = []
        holder: dict[str, SyncScheduler] = {}

        def product():
            states.append(holder["s"].state)

        def transaction():
            states.append(holder["s"].state)
            clock.set()

        holder["s"] = _scheduler(clock, product, transaction)
        holder["s"].run()

        assert states == [
            SchedulerState.RUNNING_PRODUCT_SYNC,
            SchedulerState.RUNNING_TRANSACTION_SYNC,
        ]

    def test_shutdown_before_start_runs_nothing(self):
        clock = FakeClock()
        called: list[str] = []
        scheduler = _scheduler(clock, lambda: called.append("P"), lambda: called.append("T"))

        scheduler.request_shutdown()
        scheduler.run()

        assert called == []
        assert scheduler.state is SchedulerState.SHUTTING_DOWN

    def test_shutdown_requested_mid_run_finishes_that_run(self):
        event = threading.Event()
        called: list[str] = []
        holder: dict[str, SyncScheduler] = {}

        def product():
            holder["s"].request_shutdown()
            called.append("P finished")

        holder["s"] = SyncScheduler(product, lambda: called.append("T"), stop_event=event)
        holder["s"].run()

        assert called == ["P finished"]
        assert event.is_set()

    def test_invalid_intervals(self):
        with pytest.raises(ValueError):
            SyncScheduler(lambda: None, lambda: None, product_interval=0)


def test_from_config_uses_sync_intervals():
    config = AppConfig(sync=SyncConfig(product_interval_seconds=60, transaction_interval_seconds=600))

    scheduler = SyncScheduler.from_config(config)

    assert scheduler.product_interval == 60
    assert scheduler.transaction_interval == 600
