"""Shared pytest fixtures for autoscaler benchmark tests.

Provides a virtual clock and fake EC2/Kubernetes clients whose inventories
change at given virtual times, so phase durations are deterministic.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from autoscaler_bench.logger import logger
from autoscaler_bench.models import (
    INSTANCE_STATE_PENDING,
    BenchmarkConfig,
    InstanceSummary,
    NodeSummary,
    WorkloadStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from autoscaler_bench.models import WorkloadSpec
    from autoscaler_bench.poller import CancelScope

STARTED_AT = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Virtual time with a separate timeline per thread.

    Sleeping advances only the calling thread's time. Threads other than
    the one that created the clock start at the creator's current time,
    so concurrent branches forked from it share a starting instant.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.origin = threading.current_thread()
        self.origin_now = start
        self._local = threading.local()
        self.sleeps: list[float] = []

    def now(self) -> float:
        if threading.current_thread() is self.origin:
            return self.origin_now
        if not hasattr(self._local, "now"):
            self._local.now = self.origin_now
        return self._local.now

    def advance(self, seconds: float) -> None:
        if threading.current_thread() is self.origin:
            self.origin_now += seconds
        else:
            self._local.now = self.now() + seconds

    def sleep(self, seconds: float, scope: CancelScope) -> bool:
        if scope.cancelled:
            return True
        self.sleeps.append(seconds)
        self.advance(seconds)
        return scope.cancelled


class Timeline:
    """A value that changes at given virtual times."""

    def __init__(self, clock: FakeClock, *steps: tuple[float, Any]) -> None:
        self.clock = clock
        self.steps = sorted(steps, key=lambda step: step[0])

    def current(self) -> Any:
        now = self.clock.now()
        value = self.steps[0][1]
        for at, step_value in self.steps:
            if at <= now:
                value = step_value
        return value


class FakeCompute:
    """EC2 inventory whose instances follow a timeline."""

    def __init__(self, instances: Timeline) -> None:
        self.instances = instances
        self.queries: list[tuple[str, str]] = []

    def list_instances_by_tag(self, tag_key: str, tag_value: str) -> list[InstanceSummary]:
        self.queries.append((tag_key, tag_value))
        return list(self.instances.current())


class FakeOrchestrator:
    """Kubernetes cluster whose nodes and pods follow timelines."""

    def __init__(
        self,
        nodes: dict[str, Timeline] | None = None,
        ready_replicas: Timeline | None = None,
    ) -> None:
        self.nodes = nodes or {}
        self.ready_replicas = ready_replicas
        self.created: list[WorkloadSpec] = []
        self.scaled: list[tuple[str, str, int]] = []
        self.deleted: list[tuple[str, str]] = []
        self.node_queries: list[str] = []

    def list_nodes(self, label_selector: str) -> list[NodeSummary]:
        self.node_queries.append(label_selector)
        timeline = self.nodes.get(label_selector)
        return list(timeline.current()) if timeline else []

    def get_workload_status(self, name: str, namespace: str) -> WorkloadStatus:
        ready = self.ready_replicas.current() if self.ready_replicas else 0
        return WorkloadStatus(name=name, namespace=namespace, replicas=3, ready_replicas=ready)

    def scale_workload(self, name: str, namespace: str, replicas: int) -> None:
        self.scaled.append((name, namespace, replicas))

    def create_workload(self, spec: WorkloadSpec) -> None:
        self.created.append(spec)

    def delete_workload(self, name: str, namespace: str) -> None:
        self.deleted.append((name, namespace))


class RecordingHandler(logging.Handler):
    """Collects records from the benchmark logger, which does not propagate."""

    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    @property
    def messages(self) -> list[str]:
        return [record.getMessage() for record in self.records]


def make_instances(count: int, state: str = INSTANCE_STATE_PENDING) -> list[InstanceSummary]:
    """Instances launched one second after the benchmark started."""
    return [
        InstanceSummary(
            instance_id=f"i-{index:04d}",
            launch_time=STARTED_AT + timedelta(seconds=1),
            state=state,
            address=f"ip-10-0-0-{index}.ec2.internal",
        )
        for index in range(count)
    ]


def make_nodes(count: int, ready: bool = True) -> list[NodeSummary]:
    return [NodeSummary(name=f"node-{index}", ready=ready) for index in range(count)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def log_records() -> Iterator[RecordingHandler]:
    handler = RecordingHandler()
    logger.addHandler(handler)
    yield handler
    logger.removeHandler(handler)


@pytest.fixture
def bench_config() -> BenchmarkConfig:
    """Karpenter run with three generated replicas."""
    return BenchmarkConfig(nodepool_tag="bench", replicas=3)
