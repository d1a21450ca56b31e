"""Tests for error kinds and retry classification."""

from __future__ import annotations

import pytest

from autoscaler_bench.errors import (
    BenchmarkError,
    ConfigurationError,
    ConvergenceTimeout,
    ErrorClass,
    classify_error_code,
)
from autoscaler_bench.models import BenchmarkPhase


class TestClassifyErrorCode:
    @pytest.mark.parametrize(
        "code",
        [
            "Throttling",
            "ThrottlingException",
            "RequestLimitExceeded",
            "RequestThrottled",
            "TooManyRequestsException",
            429,
            "429",
        ],
    )
    def test_rate_limits_are_transient(self, code: str | int) -> None:
        assert classify_error_code(code) is ErrorClass.TRANSIENT

    @pytest.mark.parametrize("code", [None, "AccessDenied", "InvalidParameterValue", 403, 500])
    def test_everything_else_is_permanent(self, code: str | int | None) -> None:
        assert classify_error_code(code) is ErrorClass.PERMANENT


class TestBenchmarkError:
    def test_message_names_the_failed_phase(self) -> None:
        error = ConvergenceTimeout("did not converge within 600 seconds", 600)
        error.phase = BenchmarkPhase.TERMINATING

        assert str(error) == "Instance termination failed: did not converge within 600 seconds"
        assert error.timeout == 600

    def test_message_without_phase(self) -> None:
        assert str(BenchmarkError("plain")) == "plain"

    def test_configuration_errors_are_value_errors(self) -> None:
        assert issubclass(ConfigurationError, ValueError)
