"""Data models and configuration classes for autoscaler benchmarking.

This module contains the dataclasses shared across the benchmarker: the
phase enumeration, inventory summaries, per-monitor settings, the final
timing result and the run configuration, which merges command-line flags
with defaults from a .env file and the process environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values

from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

# Karpenter (tag-driven node pools)
KARPENTER = "Karpenter"
KARPENTER_NODEPOOL_KEY = "karpenter.sh/nodepool"

# Cluster Autoscaler (named node groups)
CLUSTER_AUTOSCALER = "Cluster Autoscaler"
NODEGROUP_LABEL_KEY = "eks.amazonaws.com/nodegroup"
NODEGROUP_TAG_KEY = "eks:nodegroup-name"

# EC2 instance states
INSTANCE_STATE_PENDING = "pending"
INSTANCE_STATE_RUNNING = "running"
INSTANCE_STATE_TERMINATED = "terminated"

# Query retry configuration
MAX_QUERY_ATTEMPTS = 5
BASE_BACKOFF_DELAY = 1.0

# Generated deployment defaults
DEFAULT_CONTAINER_NAME = "inflate"
DEFAULT_CONTAINER_IMAGE = "public.ecr.aws/eks-distro/kubernetes/pause:3.7"
DEFAULT_SELECTOR_KEY = "eks.autify.com/k8s-autoscaler-benchmarker"

ENV_PREFIX = "BENCH_"


class BenchmarkPhase(Enum):
    """The timed phases of a scaling cycle, in execution order."""

    PROVISIONING = "provisioning"
    REGISTERING = "registration"
    AWAITING_READINESS = "pod_readiness"
    DEREGISTERING = "deregistration"
    TERMINATING = "termination"

    @property
    def label(self) -> str:
        """Human-readable phase name for log lines and error messages."""
        return PHASE_LABELS[self]


PHASE_LABELS = {
    BenchmarkPhase.PROVISIONING: "Instance provisioning",
    BenchmarkPhase.REGISTERING: "Node registration",
    BenchmarkPhase.AWAITING_READINESS: "Pod readiness",
    BenchmarkPhase.DEREGISTERING: "Node deregistration",
    BenchmarkPhase.TERMINATING: "Instance termination",
}

# Seconds between inventory queries, per phase
POLL_INTERVALS = {
    BenchmarkPhase.PROVISIONING: 1.0,
    BenchmarkPhase.REGISTERING: 5.0,
    BenchmarkPhase.AWAITING_READINESS: 1.0,
    BenchmarkPhase.DEREGISTERING: 5.0,
    BenchmarkPhase.TERMINATING: 5.0,
}

# Seconds between progress snapshots, per phase
LOG_INTERVALS = {
    BenchmarkPhase.PROVISIONING: 15.0,
    BenchmarkPhase.REGISTERING: 15.0,
    BenchmarkPhase.AWAITING_READINESS: 20.0,
    BenchmarkPhase.DEREGISTERING: 15.0,
    BenchmarkPhase.TERMINATING: 15.0,
}


@dataclass(frozen=True)
class Selector:
    """A tag (EC2) or label (Kubernetes) key/value pair scoping a query to one run."""

    key: str
    value: str

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


@dataclass(frozen=True)
class MonitorConfig:
    """Polling settings for one monitor invocation.

    All durations are in seconds.
    """

    poll_interval: float
    log_interval: float
    timeout: float
    selector: Selector | None = None

    def __post_init__(self) -> None:
        """Reject settings the poller cannot honour.

        Raises:
            ValueError: If any interval or the timeout is not positive.
        """
        if min(self.poll_interval, self.log_interval, self.timeout) <= 0:
            msg = "polling intervals and timeout must be positive"
            raise ValueError(msg)


@dataclass(frozen=True)
class InstanceSummary:
    """Poll-time view of one EC2 instance."""

    instance_id: str
    launch_time: datetime
    state: str
    address: str = ""

    def __str__(self) -> str:
        return f"{self.instance_id} ({self.address})"


@dataclass(frozen=True)
class NodeSummary:
    """Poll-time view of one Kubernetes node."""

    name: str
    ready: bool


@dataclass(frozen=True)
class WorkloadStatus:
    """Poll-time replica counts of the benchmark deployment."""

    name: str
    namespace: str
    replicas: int
    ready_replicas: int


@dataclass(frozen=True)
class BenchmarkResult:
    """Timing results of a complete benchmark run, in seconds."""

    provisioning_time: float
    registration_time: float
    pod_readiness_time: float
    deregistration_time: float
    termination_time: float

    def __post_init__(self) -> None:
        """Validate that every phase duration is non-negative.

        Raises:
            ValueError: If a duration is negative.
        """
        for item in fields(self):
            if getattr(self, item.name) < 0:
                msg = f"{item.name} must not be negative"
                raise ValueError(msg)

    @property
    def scale_up_time(self) -> float:
        """Provisioning, registration and pod readiness combined."""
        return self.provisioning_time + self.registration_time + self.pod_readiness_time

    @property
    def scale_down_time(self) -> float:
        """Deregistration and termination combined."""
        return self.deregistration_time + self.termination_time


@dataclass(frozen=True)
class AutoscalerTarget:
    """Selectors for the autoscaler variant under test.

    The tag scopes EC2 queries and the node label scopes Kubernetes node
    queries; both carry the same value (node pool or node group name).
    """

    autoscaler_type: str
    tag: Selector
    node_label: Selector

    @classmethod
    def from_selectors(cls, nodepool_tag: str, node_group: str) -> AutoscalerTarget:
        """Derive the target from the mutually exclusive selector flags.

        Returns:
            The Karpenter target for a node pool, or the Cluster Autoscaler
            target for a node group.

        Raises:
            ConfigurationError: If both or neither selectors are set.
        """
        if nodepool_tag and not node_group:
            return cls(
                autoscaler_type=KARPENTER,
                tag=Selector(KARPENTER_NODEPOOL_KEY, nodepool_tag),
                node_label=Selector(KARPENTER_NODEPOOL_KEY, nodepool_tag),
            )
        if node_group and not nodepool_tag:
            return cls(
                autoscaler_type=CLUSTER_AUTOSCALER,
                tag=Selector(NODEGROUP_TAG_KEY, node_group),
                node_label=Selector(NODEGROUP_LABEL_KEY, node_group),
            )
        msg = (
            "Specify either --nodepool for Karpenter or --node-group for Cluster Autoscaler, "
            "not both"
        )
        raise ConfigurationError(msg)

    @property
    def label_selector(self) -> str:
        """Kubernetes label selector matching this autoscaler's nodes."""
        return str(self.node_label)

    @property
    def requires_empty_node_group(self) -> bool:
        """Named node groups must start the run with no nodes."""
        return self.autoscaler_type == CLUSTER_AUTOSCALER

    @property
    def slug(self) -> str:
        """File-name friendly autoscaler name."""
        return self.autoscaler_type.lower().replace(" ", "-")


@dataclass(frozen=True)
class WorkloadSpec:
    """The deployment that drives the scaling cycle.

    An empty name means the benchmarker generates its own deployment, named
    after the container.
    """

    name: str
    namespace: str = "default"
    replicas: int = 1
    container_name: str = DEFAULT_CONTAINER_NAME
    container_image: str = DEFAULT_CONTAINER_IMAGE
    cpu_request: str = "1"
    toleration_key: str = DEFAULT_SELECTOR_KEY
    toleration_value: str = ""
    node_selector_key: str = DEFAULT_SELECTOR_KEY
    node_selector_value: str = "true"

    @property
    def is_generated(self) -> bool:
        """Whether the benchmarker creates (and later deletes) this deployment."""
        return not self.name

    @property
    def deployment_name(self) -> str:
        """Name of the deployment actually benchmarked."""
        return self.name or self.container_name

    @property
    def node_selector(self) -> Selector:
        """Label the workload's nodes carry, used to watch deregistration."""
        return Selector(self.node_selector_key, self.node_selector_value)


@dataclass
class TimeoutConfig:
    """Per-phase timeouts, in seconds."""

    provisioning: float = 600.0
    registration: float = 600.0
    readiness: float = 300.0
    deregistration: float = 600.0
    termination: float = 600.0

    def for_phase(self, phase: BenchmarkPhase) -> float:
        """Return the timeout that applies to a phase."""
        return {
            BenchmarkPhase.PROVISIONING: self.provisioning,
            BenchmarkPhase.REGISTERING: self.registration,
            BenchmarkPhase.AWAITING_READINESS: self.readiness,
            BenchmarkPhase.DEREGISTERING: self.deregistration,
            BenchmarkPhase.TERMINATING: self.termination,
        }[phase]


# Timeout settings are given in minutes on the command line and in the environment
TIMEOUT_SETTINGS = {
    "provisioning_timeout": "provisioning",
    "registration_timeout": "registration",
    "readiness_timeout": "readiness",
    "deregistration_timeout": "deregistration",
    "termination_timeout": "termination",
}


def load_environment(env_file: str = ".env") -> dict[str, str]:
    """Collect BENCH_* settings from a .env file and the process environment.

    Variables set in the process environment take precedence over the file.
    A missing file contributes nothing.

    Returns:
        Mapping of variable name to raw string value.
    """
    values = {key: value for key, value in dotenv_values(env_file).items() if value is not None}
    values.update({key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)})
    return values


@dataclass
class BenchmarkConfig:
    """Configuration settings for one benchmark run.

    Every setting can be supplied as a command-line flag or as a BENCH_*
    variable (for example BENCH_NAMESPACE or BENCH_PROVISIONING_TIMEOUT, in
    minutes). Flags win over the environment, which wins over the defaults.
    """

    # Client configuration
    kubeconfig_path: str = ""
    aws_profile: str = "default"

    # Deployment configuration
    deployment_name: str = ""
    namespace: str = "default"
    replicas: int = 1
    container_name: str = DEFAULT_CONTAINER_NAME
    container_image: str = DEFAULT_CONTAINER_IMAGE
    cpu_request: str = "1"
    toleration_key: str = DEFAULT_SELECTOR_KEY
    toleration_value: str = ""
    node_selector_key: str = DEFAULT_SELECTOR_KEY
    node_selector_value: str = "true"

    # Autoscaler configuration
    nodepool_tag: str = ""  # Karpenter
    node_group: str = ""  # Cluster Autoscaler

    # Runtime configuration
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    report_path: str = ""
    log_file: str = ""
    debug: bool = False

    @classmethod
    def from_sources(
        cls, flags: Mapping[str, Any], env: Mapping[str, str] | None = None
    ) -> BenchmarkConfig:
        """Build configuration from parsed flags with environment fallbacks.

        Args:
            flags: Parsed command-line values; None means "not given".
            env: Raw BENCH_* variables, usually from load_environment().

        Returns:
            A validated BenchmarkConfig.

        Raises:
            ConfigurationError: If a value cannot be converted or is out of range.
        """
        env = env or {}

        def lookup(name: str) -> Any:
            value = flags.get(name)
            if value is not None:
                return value
            return env.get(f"{ENV_PREFIX}{name.upper()}")

        def as_int(name: str, value: Any) -> int:
            try:
                return int(value)
            except (TypeError, ValueError) as e:
                msg = f"Invalid integer value for {name}: {value}"
                raise ConfigurationError(msg) from e

        def as_minutes(name: str, value: Any) -> float:
            try:
                minutes = float(value)
            except (TypeError, ValueError) as e:
                msg = f"Invalid number of minutes for {name}: {value}"
                raise ConfigurationError(msg) from e
            if minutes <= 0:
                msg = f"{name} must be greater than zero"
                raise ConfigurationError(msg)
            return minutes * 60

        def as_bool(value: Any) -> bool:
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in {"1", "true", "yes", "on"}

        settings: dict[str, Any] = {}
        for item in fields(cls):
            if item.name == "timeouts":
                continue
            value = lookup(item.name)
            if value is None:
                continue
            if item.type == "int":
                settings[item.name] = as_int(item.name, value)
            elif item.type == "bool":
                settings[item.name] = as_bool(value)
            else:
                settings[item.name] = str(value)

        timeouts = TimeoutConfig()
        for name, attribute in TIMEOUT_SETTINGS.items():
            value = lookup(name)
            if value is not None:
                setattr(timeouts, attribute, as_minutes(name, value))

        config = cls(timeouts=timeouts, **settings)
        config.validate()
        return config

    def validate(self) -> None:
        """Check settings that do not depend on the cluster.

        Raises:
            ConfigurationError: If the selectors conflict or replicas is below one.
        """
        AutoscalerTarget.from_selectors(self.nodepool_tag, self.node_group)
        if self.replicas < 1:
            msg = f"replicas must be at least 1, got {self.replicas}"
            raise ConfigurationError(msg)

    def autoscaler_target(self) -> AutoscalerTarget:
        """Derive the autoscaler selectors for this run."""
        return AutoscalerTarget.from_selectors(self.nodepool_tag, self.node_group)

    def workload_spec(self) -> WorkloadSpec:
        """Return the deployment settings for this run."""
        return WorkloadSpec(
            name=self.deployment_name,
            namespace=self.namespace,
            replicas=self.replicas,
            container_name=self.container_name,
            container_image=self.container_image,
            cpu_request=self.cpu_request,
            toleration_key=self.toleration_key,
            toleration_value=self.toleration_value,
            node_selector_key=self.node_selector_key,
            node_selector_value=self.node_selector_value,
        )

    def monitor_config(
        self, phase: BenchmarkPhase, selector: Selector | None = None
    ) -> MonitorConfig:
        """Build the polling settings for one phase."""
        return MonitorConfig(
            poll_interval=POLL_INTERVALS[phase],
            log_interval=LOG_INTERVALS[phase],
            timeout=self.timeouts.for_phase(phase),
            selector=selector,
        )
