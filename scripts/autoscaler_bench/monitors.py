"""Phase monitors for a scaling cycle.

Each monitor configures a ConvergencePoller with the query and predicate of
one benchmark phase and returns how long the phase took. Monitors that look
up nodes or instances take their tag or label from MonitorConfig.selector.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .ec2_inventory import launched_since
from .logger import logger
from .models import INSTANCE_STATE_PENDING, BenchmarkPhase
from .poller import ConvergencePoller

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .ec2_inventory import EC2InventoryClient
    from .interactive import OperatorDecision
    from .k8s_inventory import KubernetesClient
    from .models import InstanceSummary, MonitorConfig, NodeSummary, Selector, WorkloadStatus
    from .poller import CancelScope, Clock


class PhaseMonitor:
    """Shared plumbing for the phase monitors."""

    phase: BenchmarkPhase

    def __init__(
        self, config: MonitorConfig, scope: CancelScope, clock: Clock | None = None
    ) -> None:
        """Initialise the settings shared by every monitor."""
        self.config = config
        self.scope = scope
        self.clock = clock

    @property
    def selector(self) -> Selector:
        """The tag or label this monitor watches.

        Raises:
            ValueError: If the monitor was configured without one.
        """
        if self.config.selector is None:
            msg = f"{self.phase.label} monitor requires a selector"
            raise ValueError(msg)
        return self.config.selector

    def _poller(
        self,
        query: Callable[[], dict],
        predicate: Callable[[dict], bool],
        describe: Callable[[dict], str],
        on_timeout: Callable[[float], bool] | None = None,
    ) -> ConvergencePoller:
        return ConvergencePoller(
            self.phase,
            query,
            predicate,
            self.config,
            self.scope,
            clock=self.clock,
            describe=describe,
            on_timeout=on_timeout,
        )


class ProvisioningMonitor(PhaseMonitor):
    """Times how long the autoscaler takes to request instances.

    Only instances launched since the benchmark started count, so
    leftovers from earlier runs sharing the tag are ignored. The phase
    completes once the first matched instance is pending.
    """

    phase = BenchmarkPhase.PROVISIONING

    def __init__(
        self,
        compute: EC2InventoryClient,
        started_at: datetime,
        config: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
        decide: OperatorDecision | None = None,
    ) -> None:
        """Initialise the monitor.

        Args:
            compute: EC2 inventory to poll.
            started_at: Benchmark start instant (UTC) used to filter launches.
            config: Polling settings; the selector is the autoscaler tag.
            scope: Cancellation source.
            clock: Time source.
            decide: Asked whether to keep waiting when the timeout passes.
                Without it a timeout is fatal.
        """
        super().__init__(config, scope, clock)
        self.compute = compute
        self.started_at = started_at
        self.decide = decide
        self.latest: dict[str, InstanceSummary] = {}

    def _query(self) -> dict[str, InstanceSummary]:
        tag = self.selector
        instances = self.compute.list_instances_by_tag(tag.key, tag.value)
        self.latest = {i.instance_id: i for i in launched_since(instances, self.started_at)}
        return self.latest

    def _ask_operator(self, elapsed: float) -> bool:
        return self.decide(self.phase, elapsed)

    def run(self) -> tuple[float, int]:
        """Poll EC2 until new instances are pending.

        Returns:
            Elapsed seconds and the number of instances launched.
        """
        logger.info("🔍 Monitoring EC2 instance provisioning (%s)...", self.selector)

        on_timeout = self._ask_operator if self.decide is not None else None
        elapsed = self._poller(
            self._query, _first_pending, _describe_instances, on_timeout=on_timeout
        ).run()

        logger.info("Instances launched: %s", ", ".join(str(i) for i in self.latest.values()))
        return elapsed, len(self.latest)


class RegistrationMonitor(PhaseMonitor):
    """Times how long new instances take to join the cluster as Ready nodes."""

    phase = BenchmarkPhase.REGISTERING

    def __init__(
        self,
        orchestrator: KubernetesClient,
        expected: int,
        config: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
    ) -> None:
        """Initialise with the node count to wait for; the selector is the node label."""
        super().__init__(config, scope, clock)
        self.orchestrator = orchestrator
        self.expected = expected

    def _query(self) -> dict[str, NodeSummary]:
        nodes = self.orchestrator.list_nodes(str(self.selector))
        return {node.name: node for node in nodes}

    def _registered(self, nodes: dict[str, NodeSummary]) -> bool:
        return sum(node.ready for node in nodes.values()) >= self.expected

    def run(self) -> float:
        """Poll nodes until the expected number are Ready.

        Returns:
            Elapsed seconds.
        """
        logger.info(
            "🔍 Monitoring node registration (%s, expecting %d)...", self.selector, self.expected
        )
        return self._poller(self._query, self._registered, _describe_nodes).run()


class ReadinessMonitor(PhaseMonitor):
    """Times how long the workload's pods take to become ready."""

    phase = BenchmarkPhase.AWAITING_READINESS

    def __init__(
        self,
        orchestrator: KubernetesClient,
        name: str,
        namespace: str,
        replicas: int,
        config: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
    ) -> None:
        """Initialise with the deployment to watch and its target replica count."""
        super().__init__(config, scope, clock)
        self.orchestrator = orchestrator
        self.name = name
        self.namespace = namespace
        self.replicas = replicas

    def _query(self) -> dict[str, WorkloadStatus]:
        return {self.name: self.orchestrator.get_workload_status(self.name, self.namespace)}

    def _ready(self, statuses: dict[str, WorkloadStatus]) -> bool:
        return statuses[self.name].ready_replicas == self.replicas

    def _describe(self, statuses: dict[str, WorkloadStatus]) -> str:
        status = statuses[self.name]
        return f"{status.ready_replicas}/{self.replicas} pods ready"

    def run(self) -> float:
        """Poll the deployment until every replica is ready.

        Returns:
            Elapsed seconds.
        """
        logger.info("🔍 Monitoring pod readiness (%s/%s)...", self.namespace, self.name)
        return self._poller(self._query, self._ready, self._describe).run()


class DeregistrationMonitor(PhaseMonitor):
    """Times how long the workload's nodes take to leave the cluster."""

    phase = BenchmarkPhase.DEREGISTERING

    def __init__(
        self,
        orchestrator: KubernetesClient,
        config: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
    ) -> None:
        """Initialise the monitor; the selector is the workload's node selector label."""
        super().__init__(config, scope, clock)
        self.orchestrator = orchestrator

    def _query(self) -> dict[str, NodeSummary]:
        nodes = self.orchestrator.list_nodes(str(self.selector))
        return {node.name: node for node in nodes}

    def run(self) -> float:
        """Poll nodes until none carry the label.

        Returns:
            Elapsed seconds.
        """
        logger.info("🔍 Monitoring node deregistration (%s)...", self.selector)
        return self._poller(self._query, _empty, _describe_nodes).run()


class TerminationMonitor(PhaseMonitor):
    """Times how long this run's instances take to leave the EC2 inventory."""

    phase = BenchmarkPhase.TERMINATING

    def __init__(
        self,
        compute: EC2InventoryClient,
        started_at: datetime,
        config: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
    ) -> None:
        """Initialise the monitor; the selector is the autoscaler tag."""
        super().__init__(config, scope, clock)
        self.compute = compute
        self.started_at = started_at

    def _query(self) -> dict[str, InstanceSummary]:
        tag = self.selector
        instances = self.compute.list_instances_by_tag(tag.key, tag.value)
        return {i.instance_id: i for i in launched_since(instances, self.started_at)}

    def run(self) -> float:
        """Poll EC2 until no instance launched by this run remains.

        Returns:
            Elapsed seconds.
        """
        logger.info("🔍 Monitoring EC2 instance termination (%s)...", self.selector)
        return self._poller(self._query, _empty, _describe_instances).run()


def _first_pending(instances: dict[str, InstanceSummary]) -> bool:
    first = next(iter(instances.values()), None)
    return first is not None and first.state == INSTANCE_STATE_PENDING


def _empty(items: dict) -> bool:
    return not items


def _describe_instances(instances: dict[str, InstanceSummary]) -> str:
    if not instances:
        return "no instances"
    return ", ".join(f"{i.instance_id} ({i.state})" for i in instances.values())


def _describe_nodes(nodes: dict[str, NodeSummary]) -> str:
    if not nodes:
        return "no nodes"
    ready = sum(node.ready for node in nodes.values())
    return f"{ready}/{len(nodes)} nodes ready: {', '.join(sorted(nodes))}"
