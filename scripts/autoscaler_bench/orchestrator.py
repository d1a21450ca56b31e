"""Benchmark orchestration for one scaling cycle.

The orchestrator drives the workload through scale up and scale down and
times each phase with its monitor:

    provisioning -> registration -> pod readiness -> scale to zero
    -> (deregistration | termination)

Phases run strictly in order; the two scale-down phases run concurrently.
Any failure stops the run, the generated deployment (if any) is removed and
the error is re-raised, so no partial result is ever produced.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from .errors import ConfigurationError, WorkloadError
from .logger import logger
from .models import BenchmarkPhase, BenchmarkResult
from .monitors import ProvisioningMonitor, ReadinessMonitor, RegistrationMonitor
from .poller import Clock
from .report import format_duration
from .scale_down import ScaleDownCoordinator
from .workload import WorkloadManager

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .ec2_inventory import EC2InventoryClient
    from .interactive import OperatorDecision
    from .k8s_inventory import KubernetesClient
    from .models import AutoscalerTarget, BenchmarkConfig
    from .poller import CancelScope

T = TypeVar("T")


class BenchmarkOrchestrator:
    """Runs the phases of a benchmark and assembles the result."""

    def __init__(
        self,
        config: BenchmarkConfig,
        target: AutoscalerTarget,
        compute: EC2InventoryClient,
        orchestrator: KubernetesClient,
        started_at: datetime,
        scope: CancelScope,
        decide: OperatorDecision | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            config: Run configuration.
            target: Autoscaler variant under test.
            compute: EC2 inventory client.
            orchestrator: Kubernetes client.
            started_at: Benchmark start instant (UTC), captured before any phase.
            scope: Cancellation scope of the run.
            decide: Operator decision asked when provisioning times out;
                None makes the provisioning timeout fatal.
            clock: Time source for phase timing.
        """
        self.config = config
        self.target = target
        self.compute = compute
        self.orchestrator = orchestrator
        self.started_at = started_at
        self.scope = scope
        self.decide = decide
        self.clock = clock or Clock()
        self.workload = WorkloadManager(orchestrator, config.workload_spec())
        self.spans: dict[BenchmarkPhase, tuple[float, float]] = {}

    def run(self) -> BenchmarkResult:
        """Run the full scaling cycle.

        Returns:
            The timing of every phase.

        Raises:
            BenchmarkError: If any step fails, after cleanup has run.
        """
        logger.info("🚀 Starting %s benchmark...", self.target.autoscaler_type)
        self.spans = {}

        try:
            result = self._run_phases()
        except BaseException as e:
            logger.error("❌ Benchmark failed: %s", e)
            self._cleanup(failing=True)
            raise

        self._cleanup(failing=False)
        logger.info("🎉 Benchmark completed")
        return result

    def _run_phases(self) -> BenchmarkResult:
        self._check_node_group_empty()
        self.workload.prepare()

        provisioning_time, instance_count = self._timed(
            BenchmarkPhase.PROVISIONING,
            ProvisioningMonitor(
                self.compute,
                self.started_at,
                self.config.monitor_config(BenchmarkPhase.PROVISIONING, self.target.tag),
                self.scope,
                clock=self.clock,
                decide=self.decide,
            ).run,
        )
        self._completed(BenchmarkPhase.PROVISIONING, provisioning_time)

        registration_time = self._timed(
            BenchmarkPhase.REGISTERING,
            RegistrationMonitor(
                self.orchestrator,
                instance_count,
                self.config.monitor_config(BenchmarkPhase.REGISTERING, self.target.node_label),
                self.scope,
                clock=self.clock,
            ).run,
        )
        self._completed(BenchmarkPhase.REGISTERING, registration_time)

        spec = self.workload.spec
        pod_readiness_time = self._timed(
            BenchmarkPhase.AWAITING_READINESS,
            ReadinessMonitor(
                self.orchestrator,
                spec.deployment_name,
                spec.namespace,
                spec.replicas,
                self.config.monitor_config(BenchmarkPhase.AWAITING_READINESS),
                self.scope,
                clock=self.clock,
            ).run,
        )
        self._completed(BenchmarkPhase.AWAITING_READINESS, pod_readiness_time)

        self.workload.scale_to_zero()

        coordinator = ScaleDownCoordinator(
            self.orchestrator,
            self.compute,
            self.started_at,
            self.config.monitor_config(BenchmarkPhase.DEREGISTERING, spec.node_selector),
            self.config.monitor_config(BenchmarkPhase.TERMINATING, self.target.tag),
            self.scope,
            clock=self.clock,
        )
        started = self.clock.now()
        deregistration_time, termination_time = coordinator.run()
        self.spans[BenchmarkPhase.DEREGISTERING] = (started, started + deregistration_time)
        self.spans[BenchmarkPhase.TERMINATING] = (started, started + termination_time)
        self._completed(BenchmarkPhase.DEREGISTERING, deregistration_time)
        self._completed(BenchmarkPhase.TERMINATING, termination_time)

        return BenchmarkResult(
            provisioning_time=provisioning_time,
            registration_time=registration_time,
            pod_readiness_time=pod_readiness_time,
            deregistration_time=deregistration_time,
            termination_time=termination_time,
        )

    def _check_node_group_empty(self) -> None:
        """Require a named node group to start the run without nodes.

        Raises:
            ConfigurationError: If the node group already has nodes.
        """
        if not self.target.requires_empty_node_group:
            return

        nodes = self.orchestrator.list_nodes(self.target.label_selector)
        if nodes:
            msg = (
                f"Node group {self.target.node_label.value} has {len(nodes)} node(s); "
                "scale it to zero before benchmarking"
            )
            raise ConfigurationError(msg)

    def _timed(self, phase: BenchmarkPhase, run: Callable[[], T]) -> T:
        started = self.clock.now()
        outcome = run()
        self.spans[phase] = (started, self.clock.now())
        return outcome

    def _completed(self, phase: BenchmarkPhase, seconds: float) -> None:
        logger.info("✅ %s completed in %s", phase.label, format_duration(seconds))

    def _cleanup(self, *, failing: bool) -> None:
        """Delete the generated deployment, if any.

        A failed deletion never replaces the outcome of the run: after a
        failure the phase error keeps propagating, and after a success the
        timings are still returned.
        """
        try:
            self.workload.cleanup()
        except WorkloadError as e:
            if failing:
                logger.error("Cleanup failed: %s", e)
            else:
                logger.warning("⚠️ Failed to delete deployment during cleanup: %s", e)
