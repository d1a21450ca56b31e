"""Tests for the concurrent scale-down coordinator."""

from __future__ import annotations

import threading
import time

import pytest
from conftest import (
    STARTED_AT,
    FakeClock,
    FakeCompute,
    FakeOrchestrator,
    Timeline,
    make_instances,
    make_nodes,
)

from autoscaler_bench.errors import CancellationError, QueryError
from autoscaler_bench.models import (
    INSTANCE_STATE_RUNNING,
    BenchmarkPhase,
    MonitorConfig,
    NodeSummary,
    Selector,
)
from autoscaler_bench.poller import CancelScope, Clock
from autoscaler_bench.scale_down import ScaleDownCoordinator

TAG = Selector("pool", "bench")
NODE_SELECTOR = Selector("role", "bench")


def _config(selector: Selector, poll_interval: float = 1, timeout: float = 600) -> MonitorConfig:
    return MonitorConfig(
        poll_interval=poll_interval, log_interval=15, timeout=timeout, selector=selector
    )


class FailingOrchestrator(FakeOrchestrator):
    """Node listing fails after a number of successful polls."""

    def __init__(self, succeed: int) -> None:
        super().__init__()
        self.succeed = succeed

    def list_nodes(self, label_selector: str) -> list[NodeSummary]:
        self.node_queries.append(label_selector)
        if len(self.node_queries) > self.succeed:
            msg = "nodes is forbidden"
            raise QueryError(msg)
        return make_nodes(1)


class TestScaleDownCoordinator:
    def test_times_both_branches_concurrently(self, clock: FakeClock) -> None:
        clock.advance(25)
        orchestrator = FakeOrchestrator(
            nodes={"role=bench": Timeline(clock, (0, make_nodes(3)), (35, []))}
        )
        compute = FakeCompute(
            Timeline(clock, (0, make_instances(3, state=INSTANCE_STATE_RUNNING)), (43, []))
        )
        coordinator = ScaleDownCoordinator(
            orchestrator,
            compute,
            STARTED_AT,
            _config(NODE_SELECTOR),
            _config(TAG),
            CancelScope(),
            clock=clock,
        )

        deregistration, termination = coordinator.run()

        assert deregistration == pytest.approx(10)
        assert termination == pytest.approx(18)

    def test_branches_log_from_their_own_threads(self, clock: FakeClock, log_records) -> None:
        orchestrator = FakeOrchestrator()
        compute = FakeCompute(Timeline(clock, (0, [])))
        coordinator = ScaleDownCoordinator(
            orchestrator,
            compute,
            STARTED_AT,
            _config(NODE_SELECTOR),
            _config(TAG),
            CancelScope(),
            clock=clock,
        )

        coordinator.run()

        threads = {
            record.threadName
            for record in log_records.records
            if record.getMessage().startswith("🔍")
        }
        assert len(threads) == 2
        assert all(name.startswith("scale-down") for name in threads)

    def test_first_error_wins_and_stops_the_other_branch(self) -> None:
        orchestrator = FailingOrchestrator(succeed=2)
        # Termination would converge long after deregistration fails
        compute = FakeCompute(
            Timeline(Clock(), (0, make_instances(2, state=INSTANCE_STATE_RUNNING)))
        )
        parent = CancelScope()
        coordinator = ScaleDownCoordinator(
            orchestrator,
            compute,
            STARTED_AT,
            _config(NODE_SELECTOR, poll_interval=0.01),
            _config(TAG, poll_interval=0.01),
            parent,
        )

        started = time.monotonic()
        with pytest.raises(QueryError) as excinfo:
            coordinator.run()

        assert excinfo.value.phase is BenchmarkPhase.DEREGISTERING
        assert time.monotonic() - started < 5
        assert coordinator.scope.cancelled
        assert not parent.cancelled
        assert not any(thread.name.startswith("scale-down") for thread in threading.enumerate())

    def test_parent_cancellation_stops_both_branches(self) -> None:
        orchestrator = FakeOrchestrator(nodes={"role=bench": Timeline(Clock(), (0, make_nodes(1)))})
        compute = FakeCompute(
            Timeline(Clock(), (0, make_instances(1, state=INSTANCE_STATE_RUNNING)))
        )
        parent = CancelScope()
        coordinator = ScaleDownCoordinator(
            orchestrator,
            compute,
            STARTED_AT,
            _config(NODE_SELECTOR, poll_interval=0.5),
            _config(TAG, poll_interval=0.5),
            parent,
        )
        timer = threading.Timer(0.2, parent.cancel, args=("received SIGINT",))

        started = time.monotonic()
        timer.start()
        with pytest.raises(CancellationError, match="received SIGINT"):
            coordinator.run()
        elapsed = time.monotonic() - started

        assert elapsed < 0.2 + 0.5
        assert compute.queries
        assert orchestrator.node_queries
