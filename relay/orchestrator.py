from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

from pydantic import BaseModel

from config.settings import Settings
from relay.core.session import ConversationSession
from relay.presentation import TECHNICAL_ERROR_MESSAGE
from relay.results import ErrorKind, Failure, PollOutcome
from relay.retry import Sleep
from relay.session_manager import ConversationManager


logger = logging.getLogger("assistant_relay.orchestrator")

TRANSIENT_MARKERS = ("502", "503", "504")


class PollState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class RunTracker:
    """The run currently being polled, its restart count and what caused the first restart."""

    run_id: str
    restarts: int = 0
    first_reason: Optional[str] = None


class OrchestrationOutcome(BaseModel):
    state: PollState
    run_id: Optional[str] = None
    response: Optional[str] = None
    # Shown to the user; the underlying failure stays in ``failure``.
    message: Optional[str] = None
    failure: Optional[Failure] = None
    iterations: int = 0
    restarts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == PollState.COMPLETED


def is_transient(result: Failure) -> bool:
    if result.kind == ErrorKind.RUN_FAILED:
        return False
    return any(marker in result.error for marker in TRANSIENT_MARKERS)


class PollingOrchestrator:
    """Drives one submitted message from run creation to a terminal state.

    Polls every ``poll_interval_ms`` for at most ``max_iterations`` rounds.
    A transient poll failure is retried on the same run with
    ``poll_retry_delays_ms``; any other failure except a clean ``failed`` run
    restarts the run with the original text, at most ``max_run_restarts``
    times per submission. Restarted runs are not cancelled, so the stale run
    may still complete remotely.
    """

    def __init__(
        self,
        manager: ConversationManager,
        *,
        max_iterations: int = 600,
        poll_interval_ms: int = 200,
        poll_retry_delays_ms: Sequence[int] = (100, 200, 400, 800),
        max_run_restarts: int = 10,
        restart_delay_ms: int = 1000,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.manager = manager
        self.max_iterations = max_iterations
        self.poll_interval_ms = poll_interval_ms
        self.poll_retry_delays_ms: Tuple[int, ...] = tuple(poll_retry_delays_ms)
        self.max_run_restarts = max_run_restarts
        self.restart_delay_ms = restart_delay_ms
        self.sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        manager: ConversationManager,
        settings: Settings,
        *,
        sleep: Optional[Sleep] = None,
    ) -> "PollingOrchestrator":
        return cls(
            manager,
            max_iterations=settings.poll_max_iterations,
            poll_interval_ms=settings.poll_interval_ms,
            poll_retry_delays_ms=settings.poll_retry_delays_ms,
            max_run_restarts=settings.max_run_restarts,
            restart_delay_ms=settings.run_restart_delay_ms,
            sleep=sleep,
        )

    async def _wait(self, delay_ms: int) -> None:
        await self.sleep(delay_ms / 1000)

    async def submit(self, text: str, session: ConversationSession) -> OrchestrationOutcome:
        start = await self.manager.send_message(text, session)
        if isinstance(start, Failure):
            return self._unrecovered(start, run_id=None, iterations=0, restarts=0)

        logger.debug("Message %s as run %s", PollState.SUBMITTED.value, start.run_id)
        return await self.poll_until_done(start.run_id, session, original_text=text)

    async def poll_until_done(
        self,
        run_id: str,
        session: ConversationSession,
        *,
        original_text: Optional[str] = None,
    ) -> OrchestrationOutcome:
        tracker = RunTracker(run_id=run_id)
        logger.debug("Run %s: %s", run_id, PollState.POLLING.value)

        for iteration in range(1, self.max_iterations + 1):
            await self._wait(self.poll_interval_ms)
            result = await self._poll_with_backoff(tracker.run_id, session)

            if isinstance(result, Failure):
                if result.kind == ErrorKind.RUN_FAILED:
                    return self._unrecovered(
                        result,
                        run_id=tracker.run_id,
                        iterations=iteration,
                        restarts=tracker.restarts,
                    )
                restart_failure = await self._restart_run(
                    tracker, session, original_text, reason=result
                )
                if restart_failure is not None:
                    return self._unrecovered(
                        restart_failure,
                        run_id=tracker.run_id,
                        iterations=iteration,
                        restarts=tracker.restarts,
                    )
                continue

            if result.status == "completed":
                return OrchestrationOutcome(
                    state=PollState.COMPLETED,
                    run_id=tracker.run_id,
                    response=result.response,
                    iterations=iteration,
                    restarts=tracker.restarts,
                )

        timeout = Failure(
            kind=ErrorKind.TIMEOUT,
            error=f"Run {tracker.run_id} did not finish after {self.max_iterations} polls",
        )
        return self._unrecovered(
            timeout,
            run_id=tracker.run_id,
            iterations=self.max_iterations,
            restarts=tracker.restarts,
            state=PollState.TIMED_OUT,
        )

    async def _poll_with_backoff(
        self, run_id: str, session: ConversationSession
    ) -> PollOutcome:
        delays = self.poll_retry_delays_ms
        for attempt in range(len(delays) + 1):
            result = await self.manager.poll_status(run_id, session)
            if isinstance(result, Failure) and is_transient(result) and attempt < len(delays):
                logger.debug(
                    "Poll attempt %s for run %s failed (%s), waiting %sms",
                    attempt + 1,
                    run_id,
                    result.error,
                    delays[attempt],
                )
                await self._wait(delays[attempt])
                continue
            return result
        # Unreachable: the last attempt always returns.
        return result

    async def _restart_run(
        self,
        tracker: RunTracker,
        session: ConversationSession,
        original_text: Optional[str],
        *,
        reason: Failure,
    ) -> Optional[Failure]:
        """Start a fresh run for the same text; return a failure if that is not possible."""
        if original_text is None:
            return reason
        if tracker.restarts >= self.max_run_restarts:
            return Failure(
                kind=ErrorKind.RESTART_EXHAUSTED,
                error=f"Maximum number of run restarts reached ({self.max_run_restarts})",
                details=f"first restart after: {tracker.first_reason}; last poll: {reason.error}",
            )

        tracker.restarts += 1
        if tracker.first_reason is None:
            tracker.first_reason = reason.error
        logger.warning(
            "Run %s returned an invalid poll result (%s); starting a new run (%s/%s)",
            tracker.run_id,
            reason.error,
            tracker.restarts,
            self.max_run_restarts,
        )
        await self._wait(self.restart_delay_ms)

        start = await self.manager.send_message(original_text, session)
        if isinstance(start, Failure):
            return Failure(
                kind=start.kind,
                error=f"Run restart failed: {start.error}",
                details=start.details,
            )
        tracker.run_id = start.run_id
        return None

    def _unrecovered(
        self,
        failure: Failure,
        *,
        run_id: Optional[str],
        iterations: int,
        restarts: int,
        state: PollState = PollState.FAILED,
    ) -> OrchestrationOutcome:
        logger.info(
            "Message processing ended in %s (run=%s, kind=%s)",
            state.value,
            run_id,
            failure.kind.value,
        )
        logger.debug("Cause: %s (details=%s)", failure.error, failure.details)
        return OrchestrationOutcome(
            state=state,
            run_id=run_id,
            message=TECHNICAL_ERROR_MESSAGE,
            failure=failure,
            iterations=iterations,
            restarts=restarts,
        )
