"""Concurrent scale-down monitoring.

After the workload is scaled to zero, node deregistration and instance
termination progress independently, so both are timed at once on a pair of
worker threads. Both branches share a child cancellation scope: the first
branch to fail cancels the other, and only that first failure is reported.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

from .logger import logger
from .monitors import DeregistrationMonitor, TerminationMonitor

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .ec2_inventory import EC2InventoryClient
    from .k8s_inventory import KubernetesClient
    from .models import MonitorConfig
    from .poller import CancelScope, Clock


class ScaleDownCoordinator:
    """Runs the deregistration and termination monitors side by side."""

    def __init__(
        self,
        orchestrator: KubernetesClient,
        compute: EC2InventoryClient,
        started_at: datetime,
        deregistration: MonitorConfig,
        termination: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
    ) -> None:
        """Initialise the coordinator.

        Args:
            orchestrator: Kubernetes client polled for remaining nodes.
            compute: EC2 client polled for remaining instances.
            started_at: Benchmark start instant used to filter instances.
            deregistration: Settings for the node branch; selector is the node label.
            termination: Settings for the instance branch; selector is the autoscaler tag.
            scope: Parent cancellation scope of the run.
            clock: Time source shared by both branches.
        """
        self.scope = scope.child()
        self.deregistration = DeregistrationMonitor(
            orchestrator, deregistration, self.scope, clock=clock
        )
        self.termination = TerminationMonitor(
            compute, started_at, termination, self.scope, clock=clock
        )

    def run(self) -> tuple[float, float]:
        """Time both scale-down branches.

        Both worker threads have finished by the time this returns or raises.

        Returns:
            Deregistration and termination times in seconds.

        Raises:
            BenchmarkError: The first failure from either branch.
        """
        logger.info("⬇️ Monitoring scale down...")
        first_error: BaseException | None = None

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="scale-down") as executor:
            start = threading.Barrier(2)
            deregistration = executor.submit(_after, start, self.deregistration.run)
            termination = executor.submit(_after, start, self.termination.run)

            for future in as_completed((deregistration, termination)):
                error = future.exception()
                if error is None or first_error is not None:
                    continue
                first_error = error
                branch = "deregistration" if future is deregistration else "termination"
                logger.error("❌ Scale down %s branch failed: %s", branch, error)
                self.scope.cancel(f"{branch} failed")

        if first_error is not None:
            raise first_error

        return deregistration.result(), termination.result()


def _after(start: threading.Barrier, run: Callable[[], float]) -> float:
    # Each branch begins polling only once both have their own worker thread
    start.wait()
    return run()
