"""Kubernetes client for autoscaler benchmarking.

Wraps the official Kubernetes client to list nodes by label, read and scale
the benchmark deployment, and create or delete a generated deployment.
Read failures become TransientAPIError (HTTP 429) or QueryError so the
poller can retry them; write failures become WorkloadError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .errors import (
    ConfigurationError,
    ErrorClass,
    QueryError,
    TransientAPIError,
    WorkloadError,
    classify_error_code,
)
from .logger import logger
from .models import NodeSummary, WorkloadStatus

if TYPE_CHECKING:
    from .models import WorkloadSpec


class KubernetesClient:
    """Reads cluster state and drives the benchmark deployment."""

    def __init__(self, core_api: Any, apps_api: Any) -> None:
        """Initialise with CoreV1Api and AppsV1Api instances."""
        self.core_api = core_api
        self.apps_api = apps_api

    @classmethod
    def from_kubeconfig(cls, path: str = "") -> KubernetesClient:
        """Load a kubeconfig and build the API clients.

        Args:
            path: Kubeconfig file; the default location when empty.

        Returns:
            A ready-to-use KubernetesClient.

        Raises:
            ConfigurationError: If the kubeconfig cannot be loaded.
        """
        try:
            config.load_kube_config(config_file=path or None)
        except (ConfigException, OSError) as e:
            msg = f"Error building kubeconfig from {path or 'the default location'}: {e}"
            raise ConfigurationError(msg) from e

        return cls(client.CoreV1Api(), client.AppsV1Api())

    def list_nodes(self, label_selector: str) -> list[NodeSummary]:
        """List nodes matching a label selector with their readiness.

        Returns:
            One summary per node.

        Raises:
            TransientAPIError: If the API server is rate limiting.
            QueryError: For any other API failure.
        """
        try:
            nodes = self.core_api.list_node(label_selector=label_selector)
        except ApiException as e:
            raise _translate_api_exception(e, f"Error listing nodes ({label_selector})") from e

        return [
            NodeSummary(name=node.metadata.name, ready=_is_ready(node)) for node in nodes.items
        ]

    def get_workload_status(self, name: str, namespace: str) -> WorkloadStatus:
        """Read the desired and ready replica counts of a deployment.

        Returns:
            The deployment's current status.

        Raises:
            TransientAPIError: If the API server is rate limiting.
            QueryError: For any other API failure.
        """
        try:
            deployment = self.apps_api.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            msg = f"Error getting deployment {namespace}/{name}"
            raise _translate_api_exception(e, msg) from e

        return WorkloadStatus(
            name=name,
            namespace=namespace,
            replicas=deployment.spec.replicas or 0,
            ready_replicas=deployment.status.ready_replicas or 0,
        )

    def scale_workload(self, name: str, namespace: str, replicas: int) -> None:
        """Set the replica count of a deployment through its scale subresource.

        Raises:
            WorkloadError: If the scale cannot be read or updated.
        """
        try:
            scale = self.apps_api.read_namespaced_deployment_scale(name, namespace)
            current = scale.spec.replicas or 0
            self.apps_api.patch_namespaced_deployment_scale(
                name, namespace, {"spec": {"replicas": replicas}}
            )
        except ApiException as e:
            msg = f"Failed to scale deployment {namespace}/{name} to {replicas}: {e.reason}"
            raise WorkloadError(msg) from e

        if replicas > current:
            logger.info("📈 Scaled up %s from %d to %d replicas", name, current, replicas)
        elif replicas < current:
            logger.info("📉 Scaled down %s from %d to %d replicas", name, current, replicas)
        else:
            logger.info("Deployment %s already has %d replicas", name, replicas)

    def create_workload(self, spec: WorkloadSpec) -> None:
        """Create the generated benchmark deployment.

        Raises:
            WorkloadError: If the deployment cannot be created.
        """
        body = build_deployment(spec)
        try:
            self.apps_api.create_namespaced_deployment(spec.namespace, body)
        except ApiException as e:
            msg = f"Failed to create deployment {spec.namespace}/{spec.deployment_name}: {e.reason}"
            raise WorkloadError(msg) from e

        logger.info("🛠️ Created deployment %s in %s", spec.deployment_name, spec.namespace)

    def delete_workload(self, name: str, namespace: str) -> None:
        """Delete a deployment, waiting on its pods through foreground propagation.

        Raises:
            WorkloadError: If the deployment cannot be deleted.
        """
        try:
            self.apps_api.delete_namespaced_deployment(
                name,
                namespace,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
            )
        except ApiException as e:
            msg = f"Failed to delete deployment {namespace}/{name}: {e.reason}"
            raise WorkloadError(msg) from e

        logger.info("🗑️ Deleted deployment %s in %s", name, namespace)


def _is_ready(node: Any) -> bool:
    conditions = node.status.conditions if node.status else None
    return any(
        condition.type == "Ready" and condition.status == "True" for condition in conditions or []
    )


def _translate_api_exception(error: ApiException, context: str) -> TransientAPIError | QueryError:
    """Map an ApiException to the benchmarker's error kinds.

    Returns:
        The exception to raise in place of the ApiException.
    """
    if classify_error_code(error.status) is ErrorClass.TRANSIENT:
        return TransientAPIError(f"{context}: {error.reason}", code=error.status)
    return QueryError(f"{context}: {error.status} {error.reason}")


def build_deployment(spec: WorkloadSpec) -> client.V1Deployment:
    """Describe the generated deployment.

    Pods request the configured CPU, tolerate the benchmark taint and must be
    scheduled on nodes carrying the node selector label.

    Returns:
        The deployment object to submit.
    """
    labels = {"app": spec.deployment_name}
    container = client.V1Container(
        name=spec.container_name,
        image=spec.container_image,
        resources=client.V1ResourceRequirements(requests={"cpu": spec.cpu_request}),
    )
    toleration = client.V1Toleration(
        key=spec.toleration_key,
        operator="Equal",
        value=spec.toleration_value,
        effect="NoSchedule",
    )
    affinity = client.V1Affinity(
        node_affinity=client.V1NodeAffinity(
            required_during_scheduling_ignored_during_execution=client.V1NodeSelector(
                node_selector_terms=[
                    client.V1NodeSelectorTerm(
                        match_expressions=[
                            client.V1NodeSelectorRequirement(
                                key=spec.node_selector_key,
                                operator="In",
                                values=[spec.node_selector_value],
                            )
                        ]
                    )
                ]
            )
        )
    )
    return client.V1Deployment(
        metadata=client.V1ObjectMeta(name=spec.deployment_name, labels=labels),
        spec=client.V1DeploymentSpec(
            replicas=spec.replicas,
            selector=client.V1LabelSelector(match_labels=labels),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(
                    containers=[container],
                    tolerations=[toleration],
                    affinity=affinity,
                ),
            ),
        ),
    )
