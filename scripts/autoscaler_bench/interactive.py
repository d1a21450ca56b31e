"""Interactive operator decisions for timed-out phases.

When instance provisioning exceeds its timeout there may be a problem worth
troubleshooting (an unschedulable pod, a misconfigured node pool), so the
operator is asked whether to keep waiting rather than failing outright.
The decision is a plain callable so tests can script the answers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .logger import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import BenchmarkPhase

    OperatorDecision = Callable[[BenchmarkPhase, float], bool]

YES_ANSWERS = frozenset({"yes", "y"})
NO_ANSWERS = frozenset({"no", "n"})


class ConsolePrompt:
    """Asks the operator on standard input whether to keep waiting."""

    def __init__(self, input_fn: Callable[[str], str] = input) -> None:
        """Initialise the prompt.

        Args:
            input_fn: Reads one answer line; the built-in input() by default.
        """
        self.input_fn = input_fn

    def __call__(self, phase: BenchmarkPhase, elapsed: float) -> bool:
        """Prompt until the operator answers yes or no.

        End of input counts as "no", so an unattended run still cleans up.

        Returns:
            True to keep waiting, False to abort the run.
        """
        question = (
            f"{phase.label} timeout exceeded after {elapsed:.0f} seconds. There may be an "
            "issue (check pod for errors). Do you want to continue waiting to troubleshoot "
            "the issue? [yes/no]: "
        )
        while True:
            try:
                answer = self.input_fn(question).strip().lower()
            except EOFError:
                logger.warning("No operator input available, treating as 'no'")
                return False

            if answer in YES_ANSWERS:
                logger.info(
                    "Please input 'no' at the next timeout instead of force closing so that "
                    "cleanup steps can be run by the program..."
                )
                return True
            if answer in NO_ANSWERS:
                return False
            logger.warning("Invalid input. Please enter 'yes' or 'no'.")

