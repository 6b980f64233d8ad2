from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for errors raised below the session manager boundary."""


class RetryableStatusError(RelayError):
    """The upstream kept answering with a retryable status until attempts ran out."""

    def __init__(self, status_code: int, operation_name: str) -> None:
        super().__init__(f"Request failed with status code {status_code}")
        self.status_code = status_code
        self.operation_name = operation_name


class MalformedResponseError(RelayError):
    """The upstream answered with a body that does not have the expected shape."""

    def __init__(self, message: str, *, payload: Optional[str] = None) -> None:
        super().__init__(message)
        self.payload = payload


class CredentialError(RelayError):
    """A required secret could not be loaded."""
