"""Lifecycle of the deployment that drives a scaling cycle.

A run either benchmarks an existing deployment, which is scaled up and back
to zero but never deleted, or generates its own, which is created at the
start and deleted once the run ends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .logger import logger

if TYPE_CHECKING:
    from .k8s_inventory import KubernetesClient
    from .models import WorkloadSpec


class WorkloadManager:
    """Creates, scales and removes the benchmark deployment."""

    def __init__(self, orchestrator: KubernetesClient, spec: WorkloadSpec) -> None:
        """Initialise with the Kubernetes client and the deployment settings."""
        self.orchestrator = orchestrator
        self.spec = spec
        self.created = False

    @property
    def name(self) -> str:
        """Name of the deployment being benchmarked."""
        return self.spec.deployment_name

    def prepare(self) -> None:
        """Bring the deployment to its target replica count.

        A generated deployment is created with the target count; an existing
        one is scaled to it.

        Raises:
            WorkloadError: If the cluster rejects the change.
        """
        if self.spec.is_generated:
            logger.info(
                "🚀 Generating deployment %s with %d replicas...", self.name, self.spec.replicas
            )
            self.orchestrator.create_workload(self.spec)
            self.created = True
        else:
            logger.info("🚀 Scaling deployment %s to %d replicas...", self.name, self.spec.replicas)
            self.orchestrator.scale_workload(self.name, self.spec.namespace, self.spec.replicas)

    def scale_to_zero(self) -> None:
        """Scale the deployment down so the autoscaler releases its nodes.

        Raises:
            WorkloadError: If the cluster rejects the change.
        """
        logger.info("🔻 Scaling deployment %s to 0 replicas...", self.name)
        self.orchestrator.scale_workload(self.name, self.spec.namespace, 0)

    def cleanup(self) -> None:
        """Delete the deployment if this run created it.

        Safe to call more than once; only the first call after creation
        deletes anything.

        Raises:
            WorkloadError: If the deletion is rejected.
        """
        if not self.created:
            return
        self.created = False
        logger.info("🧹 Cleaning up generated deployment %s...", self.name)
        self.orchestrator.delete_workload(self.name, self.spec.namespace)
