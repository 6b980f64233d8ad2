"""
Shared pytest configuration.

Puts the project root on sys.path and provides an in-memory fake of the
assistants API that can be mounted with ``httpx.MockTransport``.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from relay.client import AssistantsApiClient  # noqa: E402
from relay.core.secrets import EnvSecretStore, SecretStore  # noqa: E402
from relay.retry import RetryPolicy  # noqa: E402
from relay.session_manager import ConversationManager  # noqa: E402


BASE_URL = "https://api.test/v1"
GREETING = "Hello, I am a helpful assistant"
TEST_ENV = {"OPENAI_API_KEY": "sk-test", "OPENAI_ASSISTANT_ID": "asst_1"}  # pragma: allowlist secret


class SleepRecorder:
    """Async stand-in for asyncio.sleep that only records the delays."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeAssistantsApi:
    """
    Minimal threads/messages/runs API.

    ``run_script`` lists the run payloads returned by successive status polls
    (the last one repeats). A ``completed`` payload appends ``reply`` to the
    thread. ``outages`` is a queue of status codes answered before any route
    is handled.
    """

    def __init__(self) -> None:
        self.threads: Dict[str, List[Dict[str, Any]]] = {}
        self.runs: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.outages: List[int] = []
        self.run_script: List[Dict[str, Any]] = [
            {"status": "in_progress"},
            {"status": "completed"},
        ]
        self.reply = "Hello!"
        self._polls: Dict[str, int] = {}
        self._created = 0

    def _message(self, role: str, text: str) -> Dict[str, Any]:
        self._created += 1
        return {
            "id": f"msg_{self._created}",
            "object": "thread.message",
            "created_at": 1700000000 + self._created,
            "role": role,
            "content": [{"type": "text", "text": {"value": text, "annotations": []}}],
        }

    def calls_to(self, method: str, suffix: str) -> List[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and r.url.path.endswith(suffix)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.outages:
            return httpx.Response(self.outages.pop(0), json={"error": "unavailable"})

        parts = request.url.path.split("/")[2:]  # drop "", "v1"

        if parts == ["threads"] and request.method == "POST":
            thread_id = f"T{len(self.threads) + 1}"
            self.threads[thread_id] = []
            return httpx.Response(200, json={"id": thread_id, "object": "thread"})

        if len(parts) < 2 or parts[1] not in self.threads:
            return httpx.Response(404, json={"error": {"message": "No thread found"}})
        thread_id = parts[1]

        if parts[2:] == ["messages"] and request.method == "POST":
            body = json.loads(request.content.decode("utf-8"))
            message = self._message(body["role"], body["content"])
            self.threads[thread_id].append(message)
            return httpx.Response(200, json=message)

        if parts[2:] == ["messages"] and request.method == "GET":
            limit = int(request.url.params.get("limit", "20"))
            data = list(reversed(self.threads[thread_id]))
            if request.url.params.get("order") == "asc":
                data.reverse()
            return httpx.Response(200, json={"object": "list", "data": data[:limit]})

        if parts[2:] == ["runs"] and request.method == "POST":
            run_id = f"R{len(self.runs) + 1}"
            self.runs[run_id] = {"id": run_id, "thread_id": thread_id, "status": "queued"}
            return httpx.Response(200, json=self.runs[run_id])

        if len(parts) == 4 and parts[2] == "runs" and request.method == "GET":
            run_id = parts[3]
            if run_id not in self.runs:
                return httpx.Response(404, json={"error": {"message": "No run found"}})
            index = self._polls.get(run_id, 0)
            self._polls[run_id] = index + 1
            payload = dict(self.run_script[min(index, len(self.run_script) - 1)])
            if payload.get("status") == "completed" and self.runs[run_id]["status"] != "completed":
                self.threads[thread_id].append(self._message("assistant", self.reply))
            self.runs[run_id].update(payload)
            return httpx.Response(200, json={"id": run_id, **payload})

        return httpx.Response(404, json={"error": {"message": "Unknown route"}})


def make_manager(
    http: httpx.AsyncClient,
    *,
    env: Optional[Dict[str, str]] = None,
    sleep: Optional[SleepRecorder] = None,
    secrets: Optional[SecretStore] = None,
) -> ConversationManager:
    api = AssistantsApiClient(
        http,
        base_url=BASE_URL,
        retry_policy=RetryPolicy.from_delays((1, 2, 4), sleep=sleep or SleepRecorder()),
    )
    return ConversationManager(
        api,
        secrets or EnvSecretStore(environ=TEST_ENV if env is None else env),
        greeting=GREETING,
    )


@pytest.fixture
def fake_api() -> FakeAssistantsApi:
    return FakeAssistantsApi()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()
