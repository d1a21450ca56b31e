"""Helper modules for Kubernetes autoscaler benchmarking.

This package contains the components of the benchmarker, organised by
responsibility: inventory clients, phase monitors, the polling core and the
orchestration of a full scaling cycle.
"""

from __future__ import annotations
