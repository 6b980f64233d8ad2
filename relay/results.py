from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


KNOWN_RUN_STATUSES = frozenset(
    {
        "queued",
        "in_progress",
        "completed",
        "requires_action",
        "failed",
        "cancelled",
        "expired",
    }
)


class ErrorKind(str, Enum):
    NO_SESSION = "no_session"
    CREDENTIALS = "credentials"
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"
    RUN_FAILED = "run_failed"
    TIMEOUT = "timeout"
    RESTART_EXHAUSTED = "restart_exhausted"


class Failure(BaseModel):
    success: Literal[False] = False
    kind: ErrorKind
    error: str
    status: Optional[str] = None
    details: Optional[str] = None


class InitResult(BaseModel):
    success: Literal[True] = True
    thread_id: str


class SendResult(BaseModel):
    success: Literal[True] = True
    run_id: str
    thread_id: str


class PollResult(BaseModel):
    success: Literal[True] = True
    status: str
    response: Optional[str] = None


class ChatMessage(BaseModel):
    id: Optional[str] = None
    role: Literal["user", "assistant"]
    text: str
    created_at: Optional[int] = None


class HistoryResult(BaseModel):
    success: Literal[True] = True
    messages: List[ChatMessage] = Field(default_factory=list)


InitOutcome = Union[InitResult, Failure]
SendOutcome = Union[SendResult, Failure]
PollOutcome = Union[PollResult, Failure]
HistoryOutcome = Union[HistoryResult, Failure]
