from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from config.settings import Settings
from relay.client import AssistantsApiClient
from relay.core.secrets import Credentials, SecretStore, load_credentials
from relay.core.session import ConversationSession
from relay.errors import CredentialError, MalformedResponseError, RelayError
from relay.results import (
    KNOWN_RUN_STATUSES,
    ChatMessage,
    ErrorKind,
    Failure,
    HistoryOutcome,
    HistoryResult,
    InitOutcome,
    InitResult,
    PollOutcome,
    PollResult,
    SendOutcome,
    SendResult,
)
from relay.retry import RetryPolicy, Sleep


logger = logging.getLogger("assistant_relay.session")

NO_SESSION_ERROR = "no session"
HANDLED_ERRORS = (RelayError, httpx.HTTPError, ValidationError)


def _no_session() -> Failure:
    return Failure(kind=ErrorKind.NO_SESSION, error=NO_SESSION_ERROR)


def _to_failure(exc: Exception, operation: str) -> Failure:
    logger.debug("[Error] %s failed: %r", operation, exc)
    if isinstance(exc, CredentialError):
        return Failure(kind=ErrorKind.CREDENTIALS, error=str(exc))
    if isinstance(exc, MalformedResponseError):
        return Failure(
            kind=ErrorKind.MALFORMED_RESPONSE, error=str(exc), details=exc.payload
        )
    if isinstance(exc, ValidationError):
        return Failure(
            kind=ErrorKind.MALFORMED_RESPONSE,
            error=f"{operation}: unexpected response shape",
            details=str(exc),
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return Failure(
            kind=ErrorKind.TRANSPORT,
            error=f"Request failed with status code {exc.response.status_code}",
            details=exc.response.text[:500],
        )
    return Failure(kind=ErrorKind.TRANSPORT, error=str(exc) or exc.__class__.__name__)


def _message_text(message: Dict[str, Any]) -> str:
    """Text of the first content part of an API message object."""
    try:
        return message["content"][0]["text"]["value"]
    except (KeyError, IndexError, TypeError):
        raise MalformedResponseError(
            "message has no text content", payload=json.dumps(message)[:500]
        ) from None


def _message_list(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, list):
        raise MalformedResponseError(
            "message list has no data array", payload=json.dumps(payload)[:500]
        )
    return data


class ConversationManager:
    """Owns the mapping from conversation operations to remote identifiers.

    Every public method returns a result model; errors from credentials,
    transport or unexpected payloads come back as ``Failure``.
    """

    def __init__(
        self,
        api: AssistantsApiClient,
        secrets: SecretStore,
        *,
        greeting: str,
        api_key_secret: str = "OpenAI-API-KEY",
        assistant_id_secret: str = "Assistant-ID",
    ) -> None:
        self.api = api
        self.secrets = secrets
        self.greeting = greeting
        self.api_key_secret = api_key_secret
        self.assistant_id_secret = assistant_id_secret

    async def _credentials(self) -> Credentials:
        try:
            return await load_credentials(
                self.secrets,
                api_key_name=self.api_key_secret,
                assistant_id_name=self.assistant_id_secret,
            )
        except CredentialError:
            raise
        except Exception as exc:
            # Any secret store failure is reported as a credential failure.
            raise CredentialError(f"Credentials could not be loaded: {exc!r}") from exc

    async def initialize(self, session: ConversationSession) -> InitOutcome:
        if session.thread_id:
            logger.debug("Reusing thread %s", session.thread_id)
            return InitResult(thread_id=session.thread_id)

        try:
            creds = await self._credentials()
            thread = await self.api.create_thread(creds.api_key)
            thread_id = thread.get("id")
            if not thread_id or not isinstance(thread_id, str):
                raise MalformedResponseError(
                    "thread response has no string id", payload=json.dumps(thread)[:500]
                )
            await self.api.add_message(
                creds.api_key, thread_id, role="assistant", content=self.greeting
            )
        except HANDLED_ERRORS as exc:
            return _to_failure(exc, "initialize")

        session.thread_id = thread_id
        logger.info("Created thread %s", thread_id)
        return InitResult(thread_id=thread_id)

    async def send_message(self, text: str, session: ConversationSession) -> SendOutcome:
        if not session.thread_id:
            return _no_session()
        thread_id = session.thread_id

        try:
            creds = await self._credentials()
            await self.api.add_message(creds.api_key, thread_id, role="user", content=text)
            run = await self.api.create_run(
                creds.api_key, thread_id, assistant_id=creds.assistant_id
            )
            run_id = run.get("id")
            if not run_id or not isinstance(run_id, str):
                raise MalformedResponseError(
                    "run response has no string id", payload=json.dumps(run)[:500]
                )
        except HANDLED_ERRORS as exc:
            return _to_failure(exc, "send message")

        logger.debug("Started run %s on thread %s", run_id, thread_id)
        return SendResult(run_id=run_id, thread_id=thread_id)

    async def poll_status(self, run_id: str, session: ConversationSession) -> PollOutcome:
        if not session.thread_id:
            return _no_session()
        thread_id = session.thread_id

        try:
            creds = await self._credentials()
            run = await self.api.get_run(creds.api_key, thread_id, run_id)

            status = run.get("status")
            if not status:
                logger.debug("[Error] run %s payload has no status: %s", run_id, run)
                return Failure(
                    kind=ErrorKind.MALFORMED_RESPONSE,
                    error="Invalid API response: no status present",
                    details=json.dumps(run),
                )
            if not isinstance(status, str) or status not in KNOWN_RUN_STATUSES:
                logger.debug("[Error] run %s has unknown status %r", run_id, status)
                return Failure(
                    kind=ErrorKind.MALFORMED_RESPONSE,
                    error=f"Invalid status: {status}",
                    details=json.dumps(run),
                )

            if status == "failed":
                last_error = run.get("last_error") or {}
                reason = last_error.get("message") if isinstance(last_error, dict) else None
                message = f"Run failed: {reason or 'Unknown error'}"
                logger.debug("[Error] %s", message)
                return Failure(kind=ErrorKind.RUN_FAILED, status="failed", error=message)

            if status == "completed":
                payload = await self.api.list_messages(
                    creds.api_key, thread_id, order="desc"
                )
                messages = _message_list(payload)
                if not messages:
                    raise MalformedResponseError("completed run left no messages")
                return PollResult(status=status, response=_message_text(messages[0]))
        except HANDLED_ERRORS as exc:
            return _to_failure(exc, "poll run status")

        return PollResult(status=status)

    async def fetch_history(self, session: ConversationSession) -> HistoryOutcome:
        """Messages of the thread, newest first as the API returns them."""
        if not session.thread_id:
            return _no_session()

        try:
            creds = await self._credentials()
            payload = await self.api.list_messages(creds.api_key, session.thread_id)
            messages = [
                ChatMessage(
                    id=item.get("id"),
                    role=item.get("role"),
                    text=_message_text(item),
                    created_at=item.get("created_at"),
                )
                for item in _message_list(payload)
            ]
        except HANDLED_ERRORS as exc:
            return _to_failure(exc, "fetch history")

        return HistoryResult(messages=messages)


def build_manager(
    http: httpx.AsyncClient,
    secrets: SecretStore,
    settings: Settings,
    *,
    retry_sleep: Optional[Sleep] = None,
) -> ConversationManager:
    api = AssistantsApiClient(
        http,
        base_url=settings.openai_api_url,
        beta_header=settings.openai_beta_header,
        retry_policy=RetryPolicy.from_delays(settings.retry_delays_ms, sleep=retry_sleep),
    )
    return ConversationManager(
        api,
        secrets,
        greeting=settings.greeting_message,
        api_key_secret=settings.api_key_secret,
        assistant_id_secret=settings.assistant_id_secret,
    )
