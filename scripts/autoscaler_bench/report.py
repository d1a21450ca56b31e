"""Benchmark report output.

This module writes the JSON report of a completed run and logs the console
summary of phase timings.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .logger import logger

if TYPE_CHECKING:
    from .models import AutoscalerTarget, BenchmarkConfig, BenchmarkResult

SUMMARY_RULE = "-" * 44


def format_duration(seconds: float) -> str:
    """Format a duration in a human-readable form.

    Returns:
        Milliseconds below one second, seconds below one minute, otherwise
        whole minutes and seconds.
    """
    if seconds < 1:
        return f"{int(seconds * 1000)} ms"
    if seconds < 60:
        return f"{seconds:.2f} seconds"
    minutes, remainder = divmod(int(seconds), 60)
    return f"{minutes} min {remainder} sec"


def build_report(
    config: BenchmarkConfig,
    target: AutoscalerTarget,
    result: BenchmarkResult,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the report document for a completed run.

    Returns:
        A JSON-serialisable mapping.
    """
    timestamp = timestamp or datetime.now(tz=UTC)
    return {
        "timestamp": timestamp.isoformat(),
        "autoscaler": target.autoscaler_type,
        "config": {
            "namespace": config.namespace,
            "replicas": config.replicas,
            "cpu_request": config.cpu_request,
            "container_image": config.container_image,
        },
        "results": {
            "provisioning_time_seconds": result.provisioning_time,
            "registration_time_seconds": result.registration_time,
            "pod_readiness_time_seconds": result.pod_readiness_time,
            "deregistration_time_seconds": result.deregistration_time,
            "termination_time_seconds": result.termination_time,
            "total_scale_up_time_seconds": result.scale_up_time,
            "total_scale_down_time_seconds": result.scale_down_time,
        },
    }


def save_report(
    path: Path,
    config: BenchmarkConfig,
    target: AutoscalerTarget,
    result: BenchmarkResult,
    timestamp: datetime | None = None,
) -> Path:
    """Write the report as JSON.

    Args:
        path: Output file, or an existing directory to write an auto-named file into.
        config: Run configuration.
        target: Autoscaler variant that was benchmarked.
        result: Phase timings.
        timestamp: Report time; now (UTC) by default.

    Returns:
        The path of the written file.
    """
    timestamp = timestamp or datetime.now(tz=UTC)
    if path.is_dir():
        path /= f"benchmark-report-{target.slug}-{timestamp.strftime('%Y%m%d-%H%M%S')}.json"

    report = build_report(config, target, result, timestamp)
    with path.open("w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
        f.write("\n")

    logger.info("💾 Benchmark report saved to: %s", path)
    return path


def print_summary(target: AutoscalerTarget, result: BenchmarkResult) -> None:
    """Log the phase timings and scaling totals of a completed run."""
    logger.info("=== BENCHMARKS SUMMARY ===")
    logger.info(SUMMARY_RULE)
    logger.info("Instance Initiation Time:     %.2f seconds", result.provisioning_time)
    logger.info("Instance Registration Time:   %.2f seconds", result.registration_time)
    logger.info("Pod Readiness Time:           %.2f seconds", result.pod_readiness_time)
    logger.info("Instance Deregistration Time: %.2f seconds", result.deregistration_time)
    logger.info("Instance Termination Time:    %.2f seconds", result.termination_time)
    logger.info(SUMMARY_RULE)
    logger.info("=== SCALING SUMMARY FOR %s ===", target.autoscaler_type.upper())
    logger.info("Total Scale-Up Time:   %.2f seconds", result.scale_up_time)
    logger.info("Total Scale-Down Time: %.2f seconds", result.scale_down_time)
    logger.info(SUMMARY_RULE)
