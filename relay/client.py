from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from relay.errors import MalformedResponseError
from relay.retry import RetryPolicy, retryable_call


MESSAGE_LIMIT = 99


class AssistantsApiClient:
    """Thin async wrapper over the threads/messages/runs endpoints.

    Every request goes through ``retryable_call``; a non-2xx status left over
    after retries raises ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str,
        beta_header: str = "assistants=v2",
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.beta_header = beta_header
        self.retry_policy = retry_policy or RetryPolicy()

    def _headers(self, api_key: str, *, with_body: bool) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": self.beta_header,
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        api_key: str,
        operation_name: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = self._headers(api_key, with_body=method == "POST")

        async def send() -> httpx.Response:
            return await self.http.request(
                method, url, headers=headers, json=json_body, params=params
            )

        response = await retryable_call(send, operation_name, self.retry_policy)
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError both derive from ValueError.
            raise MalformedResponseError(
                f"{operation_name}: response is not valid JSON",
                payload=response.content[:500].decode("utf-8", errors="replace"),
            ) from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"{operation_name}: expected a JSON object",
                payload=json.dumps(data)[:500],
            )
        return data

    async def create_thread(self, api_key: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/threads", api_key=api_key, operation_name="create thread"
        )

    async def add_message(
        self, api_key: str, thread_id: str, *, role: str, content: str
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            api_key=api_key,
            operation_name=f"add {role} message",
            json_body={"role": role, "content": content},
        )

    async def create_run(
        self, api_key: str, thread_id: str, *, assistant_id: str
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            api_key=api_key,
            operation_name="create run",
            json_body={"assistant_id": assistant_id},
        )

    async def get_run(self, api_key: str, thread_id: str, run_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/threads/{thread_id}/runs/{run_id}",
            api_key=api_key,
            operation_name="get run status",
        )

    async def list_messages(
        self,
        api_key: str,
        thread_id: str,
        *,
        limit: int = MESSAGE_LIMIT,
        order: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit}
        if order:
            params["order"] = order
        return await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            api_key=api_key,
            operation_name="list messages",
            params=params,
        )
