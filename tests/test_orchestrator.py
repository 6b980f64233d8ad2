import httpx
import pytest

from conftest import SleepRecorder, make_manager
from relay.core.session import ConversationSession
from relay.orchestrator import PollingOrchestrator, PollState, is_transient
from relay.presentation import TECHNICAL_ERROR_MESSAGE
from relay.results import ErrorKind, Failure, PollResult, SendResult


class ScriptedManager:
    """Manager stub returning scripted poll results; the last one repeats."""

    def __init__(self, polls, sends=None):
        self.polls = list(polls)
        self.sends = list(sends or [])
        self.sent = []
        self.polled = []

    async def send_message(self, text, session):
        self.sent.append(text)
        if self.sends:
            return self.sends.pop(0)
        return SendResult(run_id=f"R{len(self.sent)}", thread_id=session.thread_id)

    async def poll_status(self, run_id, session):
        self.polled.append(run_id)
        if len(self.polls) > 1:
            return self.polls.pop(0)
        return self.polls[0]


def _malformed():
    return Failure(kind=ErrorKind.MALFORMED_RESPONSE, error="Invalid API response: no status present")


def _unavailable():
    return Failure(kind=ErrorKind.TRANSPORT, error="Request failed with status code 503")


@pytest.mark.asyncio
async def test_submit_completes_with_response(fake_api):
    sleeper = SleepRecorder()
    session = ConversationSession()

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler)) as http:
        manager = make_manager(http)
        await manager.initialize(session)
        outcome = await PollingOrchestrator(manager, sleep=sleeper).submit("Hi", session)

    assert outcome.state == PollState.COMPLETED
    assert outcome.succeeded
    assert outcome.response == "Hello!"
    assert outcome.run_id == "R1"
    assert outcome.iterations == 2
    assert outcome.message is None
    assert sleeper.calls == [0.2, 0.2]


@pytest.mark.asyncio
async def test_failed_run_stops_polling(fake_api):
    fake_api.run_script = [{"status": "failed", "last_error": {"message": "boom"}}]
    sleeper = SleepRecorder()
    session = ConversationSession()

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler)) as http:
        manager = make_manager(http)
        await manager.initialize(session)
        outcome = await PollingOrchestrator(manager, sleep=sleeper).submit("Hi", session)

    assert outcome.state == PollState.FAILED
    assert outcome.message == TECHNICAL_ERROR_MESSAGE
    assert outcome.failure.kind == ErrorKind.RUN_FAILED
    assert outcome.failure.error == "Run failed: boom"
    assert outcome.response is None
    assert len(fake_api.calls_to("GET", "/runs/R1")) == 1
    assert len(fake_api.calls_to("POST", "/runs")) == 1


@pytest.mark.asyncio
async def test_timeout_after_max_iterations(fake_api):
    fake_api.run_script = [{"status": "in_progress"}]
    sleeper = SleepRecorder()
    session = ConversationSession()

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler)) as http:
        manager = make_manager(http)
        await manager.initialize(session)
        outcome = await PollingOrchestrator(manager, sleep=sleeper).submit("Hi", session)

    assert outcome.state == PollState.TIMED_OUT
    assert outcome.failure.kind == ErrorKind.TIMEOUT
    assert outcome.message == TECHNICAL_ERROR_MESSAGE
    assert outcome.iterations == 600
    assert len(fake_api.calls_to("GET", "/runs/R1")) == 600
    assert len(sleeper.calls) == 600


@pytest.mark.asyncio
async def test_submit_without_session_never_polls():
    manager = ScriptedManager(
        polls=[PollResult(status="completed", response="x")],
        sends=[Failure(kind=ErrorKind.NO_SESSION, error="no session")],
    )

    outcome = await PollingOrchestrator(manager, sleep=SleepRecorder()).submit(
        "Hi", ConversationSession()
    )

    assert outcome.state == PollState.FAILED
    assert outcome.failure.kind == ErrorKind.NO_SESSION
    assert manager.polled == []


@pytest.mark.asyncio
async def test_transient_poll_failure_is_retried_on_same_run():
    sleeper = SleepRecorder()
    manager = ScriptedManager(
        polls=[_unavailable(), _unavailable(), PollResult(status="completed", response="ok")]
    )

    outcome = await PollingOrchestrator(manager, sleep=sleeper).submit(
        "Hi", ConversationSession("T1")
    )

    assert outcome.succeeded
    assert outcome.restarts == 0
    assert manager.polled == ["R1", "R1", "R1"]
    assert sleeper.calls == [0.2, 0.1, 0.2]


@pytest.mark.asyncio
async def test_malformed_poll_restarts_run_with_original_text():
    sleeper = SleepRecorder()
    manager = ScriptedManager(
        polls=[_malformed(), PollResult(status="completed", response="ok")]
    )

    outcome = await PollingOrchestrator(manager, sleep=sleeper).submit(
        "Hi", ConversationSession("T1")
    )

    assert outcome.succeeded
    assert outcome.run_id == "R2"
    assert outcome.restarts == 1
    assert manager.sent == ["Hi", "Hi"]
    assert manager.polled == ["R1", "R2"]
    assert sleeper.calls == [0.2, 1.0, 0.2]


@pytest.mark.asyncio
async def test_exhausted_transient_retries_fall_back_to_restart():
    sleeper = SleepRecorder()
    manager = ScriptedManager(
        polls=[_unavailable()] * 5 + [PollResult(status="completed", response="ok")]
    )

    outcome = await PollingOrchestrator(manager, sleep=sleeper).submit(
        "Hi", ConversationSession("T1")
    )

    assert outcome.succeeded
    assert outcome.restarts == 1
    assert sleeper.calls == [0.2, 0.1, 0.2, 0.4, 0.8, 1.0, 0.2]


@pytest.mark.asyncio
async def test_restarts_are_bounded():
    manager = ScriptedManager(polls=[_malformed()])

    outcome = await PollingOrchestrator(
        manager, max_run_restarts=3, sleep=SleepRecorder()
    ).submit("Hi", ConversationSession("T1"))

    assert outcome.state == PollState.FAILED
    assert outcome.failure.kind == ErrorKind.RESTART_EXHAUSTED
    assert outcome.restarts == 3
    assert len(manager.sent) == 4
    assert "first restart after: Invalid API response" in outcome.failure.details
    assert outcome.message == TECHNICAL_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_failed_restart_is_terminal():
    manager = ScriptedManager(
        polls=[_malformed()],
        sends=[
            SendResult(run_id="R1", thread_id="T1"),
            Failure(kind=ErrorKind.TRANSPORT, error="Request failed with status code 500"),
        ],
    )

    outcome = await PollingOrchestrator(manager, sleep=SleepRecorder()).submit(
        "Hi", ConversationSession("T1")
    )

    assert outcome.state == PollState.FAILED
    assert outcome.failure.error.startswith("Run restart failed:")
    assert manager.polled == ["R1"]


@pytest.mark.asyncio
async def test_poll_without_original_text_does_not_restart():
    manager = ScriptedManager(polls=[_malformed()])

    outcome = await PollingOrchestrator(manager, sleep=SleepRecorder()).poll_until_done(
        "R7", ConversationSession("T1")
    )

    assert outcome.state == PollState.FAILED
    assert outcome.failure.kind == ErrorKind.MALFORMED_RESPONSE
    assert manager.sent == []


def test_is_transient():
    assert is_transient(_unavailable())
    assert not is_transient(_malformed())
    assert not is_transient(
        Failure(kind=ErrorKind.RUN_FAILED, status="failed", error="Run failed: 503 upstream")
    )
