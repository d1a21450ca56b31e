"""Tests for the convergence poller and cancellation scopes."""

from __future__ import annotations

import pytest
from conftest import FakeClock

from autoscaler_bench.errors import (
    CancellationError,
    ConvergenceTimeout,
    QueryError,
    TransientAPIError,
    UserAbort,
)
from autoscaler_bench.models import BenchmarkPhase, MonitorConfig
from autoscaler_bench.poller import CancelScope, ConvergencePoller

PHASE = BenchmarkPhase.REGISTERING


def _converges_at(clock: FakeClock, at: float):
    def query() -> dict[str, float]:
        return {"now": clock.now()}

    def predicate(snapshot: dict[str, float]) -> bool:
        return snapshot["now"] >= at

    return query, predicate


def _never() -> tuple:
    return (lambda: {}), (lambda snapshot: False)


class TestCancelScope:
    def test_cancelling_parent_cancels_children(self) -> None:
        parent = CancelScope()
        child = parent.child()
        grandchild = child.child()

        parent.cancel("stop")

        assert child.cancelled
        assert grandchild.cancelled
        assert grandchild.reason == "stop"

    def test_cancelling_child_leaves_parent_running(self) -> None:
        parent = CancelScope()
        child = parent.child()

        child.cancel()

        assert child.cancelled
        assert not parent.cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self) -> None:
        parent = CancelScope()
        parent.cancel("already")

        assert parent.child().cancelled

    def test_first_reason_is_kept(self) -> None:
        scope = CancelScope()
        scope.cancel("first")
        scope.cancel("second")

        assert scope.reason == "first"


class TestConvergencePoller:
    def test_returns_zero_when_converged_on_first_poll(self, clock: FakeClock) -> None:
        poller = ConvergencePoller(
            PHASE, lambda: {"a": 1}, bool, MonitorConfig(1, 10, 60), CancelScope(), clock=clock
        )

        assert poller.run() == 0
        assert poller.polls == 1

    def test_returns_elapsed_time_until_predicate_holds(self, clock: FakeClock) -> None:
        query, predicate = _converges_at(clock, 12)
        poller = ConvergencePoller(
            PHASE, query, predicate, MonitorConfig(1, 15, 60), CancelScope(), clock=clock
        )

        assert poller.run() == pytest.approx(12)
        assert poller.polls == 13

    def test_elapsed_is_reproducible_within_poll_interval(self) -> None:
        results = []
        for _ in range(3):
            clock = FakeClock(start=100.0)
            query, predicate = _converges_at(clock, 107)
            config = MonitorConfig(poll_interval=5, log_interval=15, timeout=60)
            results.append(
                ConvergencePoller(PHASE, query, predicate, config, CancelScope(), clock=clock).run()
            )

        assert results == [10, 10, 10]
        assert 7 <= results[0] < 7 + 5

    @pytest.mark.parametrize(("poll_interval", "timeout"), [(1, 10), (2, 7), (5, 12), (3, 3.5)])
    def test_timeout_is_raised_within_one_poll_interval(
        self, poll_interval: float, timeout: float
    ) -> None:
        clock = FakeClock()
        query, predicate = _never()
        config = MonitorConfig(poll_interval=poll_interval, log_interval=60, timeout=timeout)
        poller = ConvergencePoller(PHASE, query, predicate, config, CancelScope(), clock=clock)

        with pytest.raises(ConvergenceTimeout) as excinfo:
            poller.run()

        assert timeout <= clock.now() < timeout + poll_interval
        assert excinfo.value.phase is PHASE
        assert excinfo.value.timeout == timeout

    def test_throttled_queries_back_off_without_resetting_the_clock(
        self, clock: FakeClock
    ) -> None:
        failures = [TransientAPIError("slow down", code="Throttling")] * 2

        def query() -> dict[str, int]:
            if failures:
                raise failures.pop()
            return {"i-1": 1}

        poller = ConvergencePoller(
            PHASE, query, bool, MonitorConfig(1, 15, 60), CancelScope(), clock=clock
        )

        assert poller.run() == pytest.approx(3)
        assert clock.sleeps == [1, 2]

    def test_exhausted_retries_raise_query_error(self, clock: FakeClock) -> None:
        throttled = TransientAPIError("slow down", code="Throttling")

        def query() -> dict:
            raise throttled

        poller = ConvergencePoller(
            PHASE, query, bool, MonitorConfig(1, 15, 60), CancelScope(), clock=clock
        )

        with pytest.raises(QueryError) as excinfo:
            poller.run()

        assert excinfo.value.__cause__ is throttled
        assert excinfo.value.phase is PHASE
        assert clock.sleeps == [1, 2, 4, 8]

    def test_query_error_aborts_immediately(self, clock: FakeClock) -> None:
        calls = []

        def query() -> dict:
            calls.append(1)
            msg = "forbidden"
            raise QueryError(msg)

        poller = ConvergencePoller(
            PHASE, query, bool, MonitorConfig(1, 15, 60), CancelScope(), clock=clock
        )

        with pytest.raises(QueryError) as excinfo:
            poller.run()

        assert len(calls) == 1
        assert excinfo.value.phase is PHASE
        assert str(excinfo.value) == "Node registration failed: forbidden"

    def test_unexpected_exceptions_are_wrapped(self, clock: FakeClock) -> None:
        def query() -> dict:
            msg = "boom"
            raise RuntimeError(msg)

        poller = ConvergencePoller(
            PHASE, query, bool, MonitorConfig(1, 15, 60), CancelScope(), clock=clock
        )

        with pytest.raises(QueryError) as excinfo:
            poller.run()

        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_escalation_accepting_restarts_the_clock(self, clock: FakeClock) -> None:
        query, predicate = _converges_at(clock, 14)
        decisions = []

        def on_timeout(elapsed: float) -> bool:
            decisions.append(elapsed)
            return True

        poller = ConvergencePoller(
            PHASE,
            query,
            predicate,
            MonitorConfig(1, 15, 10),
            CancelScope(),
            clock=clock,
            on_timeout=on_timeout,
        )

        assert poller.run() == pytest.approx(4)
        assert decisions == [10]

    def test_escalation_declining_raises_user_abort(self, clock: FakeClock) -> None:
        query, predicate = _never()
        poller = ConvergencePoller(
            PHASE,
            query,
            predicate,
            MonitorConfig(1, 15, 10),
            CancelScope(),
            clock=clock,
            on_timeout=lambda elapsed: False,
        )

        with pytest.raises(UserAbort) as excinfo:
            poller.run()

        assert excinfo.value.phase is PHASE

    def test_cancelled_scope_stops_without_querying(self, clock: FakeClock) -> None:
        scope = CancelScope()
        scope.cancel("signal")
        calls = []

        def query() -> dict:
            calls.append(1)
            return {}

        poller = ConvergencePoller(PHASE, query, bool, MonitorConfig(1, 15, 60), scope, clock=clock)

        with pytest.raises(CancellationError, match="signal"):
            poller.run()

        assert calls == []

    def test_cancellation_during_polling_stops_the_loop(self, clock: FakeClock) -> None:
        scope = CancelScope()
        calls = []

        def query() -> dict:
            calls.append(1)
            if len(calls) == 3:
                scope.cancel()
            return {}

        poller = ConvergencePoller(PHASE, query, bool, MonitorConfig(1, 15, 60), scope, clock=clock)

        with pytest.raises(CancellationError):
            poller.run()

        assert len(calls) == 3

    def test_progress_is_logged_every_log_interval(self, clock: FakeClock, log_records) -> None:
        query, predicate = _converges_at(clock, 35)
        poller = ConvergencePoller(
            PHASE,
            query,
            predicate,
            MonitorConfig(poll_interval=5, log_interval=15, timeout=60),
            CancelScope(),
            clock=clock,
            describe=lambda snapshot: "still waiting",
        )

        poller.run()

        progress = [m for m in log_records.messages if m.endswith("still waiting")]
        assert progress == [
            "⏳ Node registration (15s): still waiting",
            "⏳ Node registration (30s): still waiting",
        ]
