"""Convergence polling for eventually-consistent inventories.

A ConvergencePoller repeatedly queries an inventory (EC2 instances,
Kubernetes nodes, deployment status) until a predicate over the latest
snapshot holds, and reports how long that took. Every monitor in the
benchmarker is a poller configured with its own query and predicate.

Polls sleep on a CancelScope, so a cancelled run wakes every active poller
immediately instead of waiting out the poll interval.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

from .errors import (
    BenchmarkError,
    CancellationError,
    ConvergenceTimeout,
    QueryError,
    TransientAPIError,
    UserAbort,
)
from .logger import logger
from .models import BASE_BACKOFF_DELAY, MAX_QUERY_ATTEMPTS

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .models import BenchmarkPhase, MonitorConfig

    Snapshot = Mapping[str, Any]


class CancelScope:
    """A cancellation source shared by the pollers of one run.

    Cancelling a scope also cancels every scope derived from it with
    child(); cancelling a child leaves its parent running. A scope can only
    be cancelled once, and the first reason given is kept.
    """

    def __init__(self, parent: CancelScope | None = None) -> None:
        """Create a scope, optionally linked to a parent scope."""
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancelScope] = []
        self.reason = ""
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: CancelScope) -> None:
        with self._lock:
            self._children.append(child)
            already_cancelled = self._event.is_set()
        if already_cancelled:
            child.cancel(self.reason)

    def child(self) -> CancelScope:
        """Create a scope that is cancelled whenever this one is.

        Returns:
            The new child scope.
        """
        return CancelScope(parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this scope and all of its children."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called on this scope or an ancestor."""
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block for up to timeout seconds or until cancelled.

        Returns:
            True if the scope is cancelled.
        """
        return self._event.wait(timeout)


class Clock:
    """Monotonic time source for phase timing."""

    def now(self) -> float:
        """Return the current monotonic time in seconds."""
        return time.monotonic()

    def sleep(self, seconds: float, scope: CancelScope) -> bool:
        """Sleep for the given number of seconds, waking early on cancellation.

        Returns:
            True if the scope was cancelled before or during the sleep.
        """
        return scope.wait(seconds)


class ConvergencePoller:
    """Polls an inventory until a predicate over its latest snapshot holds.

    The query returns a mapping of identifier to summary. Rate-limited
    queries (TransientAPIError) are retried with exponential backoff without
    restarting the phase clock; any other query failure ends the poll.

    When the timeout passes, the poller raises ConvergenceTimeout unless an
    on_timeout callback is given. The callback receives the elapsed seconds
    and returns True to restart the phase clock and keep polling, or False
    to abort with UserAbort.
    """

    def __init__(
        self,
        phase: BenchmarkPhase,
        query: Callable[[], Snapshot],
        predicate: Callable[[Snapshot], bool],
        config: MonitorConfig,
        scope: CancelScope,
        clock: Clock | None = None,
        describe: Callable[[Snapshot], str] | None = None,
        on_timeout: Callable[[float], bool] | None = None,
    ) -> None:
        """Initialise the poller.

        Args:
            phase: The benchmark phase this poller times.
            query: Returns the current inventory snapshot.
            predicate: Decides whether a snapshot has converged.
            config: Poll interval, log interval and timeout.
            scope: Cancellation source checked between polls.
            clock: Time source; defaults to the monotonic clock.
            describe: Renders a snapshot for periodic progress logs.
            on_timeout: Operator escalation hook, see class docstring.
        """
        self.phase = phase
        self.query = query
        self.predicate = predicate
        self.config = config
        self.scope = scope
        self.clock = clock or Clock()
        self.describe = describe
        self.on_timeout = on_timeout
        self.max_attempts = MAX_QUERY_ATTEMPTS
        self.backoff_delay = BASE_BACKOFF_DELAY
        self.polls = 0

    def run(self) -> float:
        """Poll until the predicate holds.

        Returns:
            Seconds from the start of polling (or from the last escalation
            reset) until the predicate first held.

        Raises:
            CancellationError: If the scope is cancelled.
            ConvergenceTimeout: If the timeout passes and there is no escalation hook.
            UserAbort: If the escalation hook declines to keep waiting.
            QueryError: If a query fails, or stays rate limited after every retry.
        """
        started = self.clock.now()
        next_log = started + self.config.log_interval

        while True:
            if self.scope.cancelled:
                raise self._cancelled()

            snapshot = self._query()
            now = self.clock.now()
            elapsed = now - started

            if self.predicate(snapshot):
                logger.debug("%s converged after %d polls", self.phase.label, self.polls)
                return elapsed

            if now >= next_log:
                self._log_progress(snapshot, elapsed)
                next_log = now + self.config.log_interval

            if elapsed >= self.config.timeout:
                self._escalate(elapsed)
                started = self.clock.now()
                next_log = started + self.config.log_interval

            if self.clock.sleep(self.config.poll_interval, self.scope):
                raise self._cancelled()

    def _query(self) -> Snapshot:
        """Run the query, backing off while it is rate limited.

        Returns:
            The inventory snapshot.

        Raises:
            QueryError: If the query fails or stays rate limited.
            CancellationError: If cancelled while backing off.
        """
        last_error: TransientAPIError | None = None
        for attempt in range(self.max_attempts):
            try:
                snapshot = self.query()
            except TransientAPIError as e:
                last_error = e
            except BenchmarkError as e:
                if e.phase is None:
                    e.phase = self.phase
                raise
            except Exception as e:
                msg = f"inventory query failed: {e}"
                raise QueryError(msg, phase=self.phase) from e
            else:
                self.polls += 1
                return snapshot

            if attempt < self.max_attempts - 1:
                delay = self.backoff_delay * 2**attempt
                logger.warning(
                    "Throttling error encountered (%s), backing off for %.0f seconds",
                    last_error.code,
                    delay,
                )
                if self.clock.sleep(delay, self.scope):
                    raise self._cancelled()

        msg = f"query still rate limited after {self.max_attempts} attempts"
        raise QueryError(msg, phase=self.phase) from last_error

    def _escalate(self, elapsed: float) -> None:
        """Handle an expired timeout.

        Raises:
            ConvergenceTimeout: If there is no escalation hook.
            UserAbort: If the hook declines to keep waiting.
        """
        if self.on_timeout is None:
            msg = f"did not converge within {self.config.timeout:.0f} seconds"
            raise ConvergenceTimeout(msg, self.config.timeout, phase=self.phase)

        logger.warning("⏰ %s timeout exceeded after %.0f seconds", self.phase.label, elapsed)
        if not self.on_timeout(elapsed):
            msg = "exiting due to user input"
            raise UserAbort(msg, phase=self.phase)
        logger.info("🔁 Restarting the %s clock", self.phase.label.lower())

    def _log_progress(self, snapshot: Snapshot, elapsed: float) -> None:
        if self.describe is not None:
            status = self.describe(snapshot)
        else:
            status = f"{len(snapshot)} item(s)"
        logger.info("⏳ %s (%.0fs): %s", self.phase.label, elapsed, status)

    def _cancelled(self) -> CancellationError:
        msg = f"polling stopped: {self.scope.reason or 'cancelled'}"
        return CancellationError(msg, phase=self.phase)
