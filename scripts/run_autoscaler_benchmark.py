#!/usr/bin/env python3
"""Kubernetes Autoscaler Latency Benchmark.

Measures how long a node autoscaler takes to complete a scaling cycle on an
EKS cluster: scale a deployment up, time how long EC2 instances take to be
requested, register as nodes and run the pods, then scale it to zero and
time node deregistration and instance termination concurrently.

Two autoscalers are supported and compared by running the tool once for
each:
- Karpenter, selected with --nodepool
- Cluster Autoscaler, selected with --node-group

Every flag may also be set as a BENCH_* variable in a .env file or the
environment (for example BENCH_NAMESPACE=bench). Flags take precedence.
"""

from __future__ import annotations

import argparse
import signal
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from autoscaler_bench.ec2_inventory import EC2InventoryClient
from autoscaler_bench.errors import BenchmarkError, ConfigurationError
from autoscaler_bench.interactive import ConsolePrompt
from autoscaler_bench.k8s_inventory import KubernetesClient
from autoscaler_bench.logger import add_file_handler, logger, set_level
from autoscaler_bench.models import (
    DEFAULT_CONTAINER_IMAGE,
    DEFAULT_CONTAINER_NAME,
    DEFAULT_SELECTOR_KEY,
    BenchmarkConfig,
    load_environment,
)
from autoscaler_bench.orchestrator import BenchmarkOrchestrator
from autoscaler_bench.poller import CancelScope
from autoscaler_bench.report import print_summary, save_report

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

# Flags handled by this script rather than BenchmarkConfig
SCRIPT_FLAGS = ("env_file", "non_interactive")


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments for benchmark configuration.

    Options default to None so that unset flags fall back to the environment.

    Returns:
        Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Kubernetes autoscaler latency benchmark",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Defaults:
  Container: {DEFAULT_CONTAINER_NAME} ({DEFAULT_CONTAINER_IMAGE})
  Toleration and node selector key: {DEFAULT_SELECTOR_KEY}
  Timeouts (minutes): provisioning 10, registration 10, readiness 5,
                      deregistration 10, termination 10
        """,
    )

    clients = parser.add_argument_group("clients")
    clients.add_argument("--kubeconfig", dest="kubeconfig_path", help="Path to the kubeconfig file")
    clients.add_argument("--aws-profile", help="AWS profile to use (default: default)")

    workload = parser.add_argument_group("workload")
    workload.add_argument(
        "--deployment",
        dest="deployment_name",
        help="Existing deployment to scale; a deployment is generated when omitted",
    )
    workload.add_argument("--namespace", help="Kubernetes namespace (default: default)")
    workload.add_argument("--replicas", type=int, help="Replicas to scale up to (default: 1)")
    workload.add_argument("--container-name", help="Name of the generated container")
    workload.add_argument("--container-image", help="Image of the generated container")
    workload.add_argument("--cpu-request", help="CPU request of each pod (default: 1)")
    workload.add_argument("--toleration-key", help="Taint key tolerated by generated pods")
    workload.add_argument("--toleration-value", help="Taint value tolerated by generated pods")
    workload.add_argument("--node-selector-key", help="Node label key generated pods require")
    workload.add_argument(
        "--node-selector-value", help="Node label value generated pods require (default: true)"
    )

    autoscaler = parser.add_argument_group("autoscaler (choose one)")
    autoscaler.add_argument(
        "--nodepool", dest="nodepool_tag", help="Karpenter node pool to benchmark"
    )
    autoscaler.add_argument("--node-group", help="Cluster Autoscaler node group to benchmark")

    timeouts = parser.add_argument_group("timeouts (minutes)")
    for phase in ("provisioning", "registration", "readiness", "deregistration", "termination"):
        timeouts.add_argument(f"--{phase}-timeout", type=float, metavar="MINUTES")

    output = parser.add_argument_group("output")
    output.add_argument(
        "--report",
        dest="report_path",
        metavar="PATH",
        help="Write a JSON report to this file, or an auto-named file in this directory",
    )
    output.add_argument("--log-file", help="Also write the log to this file")
    output.add_argument("--debug", action="store_true", default=None, help="Enable debug logging")
    output.add_argument("--env-file", default=".env", help="Environment file (default: .env)")
    output.add_argument(
        "--non-interactive",
        action="store_true",
        help="Fail on provisioning timeout instead of asking whether to keep waiting",
    )

    return parser.parse_args(argv)


def build_clients(config: BenchmarkConfig) -> tuple[EC2InventoryClient, KubernetesClient]:
    """Create the EC2 and Kubernetes clients for a run.

    Returns:
        The EC2 inventory client and the Kubernetes client.

    Raises:
        ConfigurationError: If either client cannot be configured.
    """
    compute = EC2InventoryClient.from_profile(config.aws_profile)
    orchestrator = KubernetesClient.from_kubeconfig(config.kubeconfig_path)
    return compute, orchestrator


def install_signal_handlers(scope: CancelScope) -> None:
    """Cancel the run on SIGINT or SIGTERM so cleanup can still happen."""

    def handle(signum: int, _frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        logger.warning("🛑 Received %s, stopping benchmark...", name)
        scope.cancel(f"received {name}")

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for autoscaler benchmarking.

    Validates configuration before any client is created, then runs one
    scaling cycle and reports its timings.

    Raises:
        SystemExit: If configuration is invalid or any benchmark step fails.
    """
    args = parse_arguments(argv)
    flags = {key: value for key, value in vars(args).items() if key not in SCRIPT_FLAGS}

    try:
        config = BenchmarkConfig.from_sources(flags, load_environment(args.env_file))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1) from e

    set_level(config.debug)
    if config.log_file:
        add_file_handler(Path(config.log_file))

    scope = CancelScope()
    install_signal_handlers(scope)
    target = config.autoscaler_target()

    try:
        compute, orchestrator = build_clients(config)
        started_at = datetime.now(tz=UTC)
        benchmark = BenchmarkOrchestrator(
            config,
            target,
            compute,
            orchestrator,
            started_at,
            scope,
            decide=None if args.non_interactive else ConsolePrompt(),
        )
        result = benchmark.run()

        print_summary(target, result)
        if config.report_path:
            save_report(Path(config.report_path), config, target, result)
    except BenchmarkError as e:
        # Known failures are reported without a traceback
        logger.error("Benchmark failed: %s", e)
        raise SystemExit(1) from e
    except Exception as e:
        logger.exception("Benchmark failed with unexpected error")
        raise SystemExit(1) from e

    logger.info("Process finished successfully.")


if __name__ == "__main__":
    main()
