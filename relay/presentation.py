from __future__ import annotations

from typing import Iterable, List, Optional

from pydantic import BaseModel

from relay.results import ChatMessage


TECHNICAL_ERROR_MESSAGE = "A technical error occurred. Please try again later."
RESET_ERROR_MESSAGE = "A technical error occurred while resetting the chat. Please try again later."


class ChatEntry(BaseModel):
    id: str
    user: Optional[str] = None
    assistant: Optional[str] = None


def to_chat_entries(messages: Iterable[ChatMessage]) -> List[ChatEntry]:
    """Turn newest-first API messages into chronological display entries."""
    entries: List[ChatEntry] = []
    for index, message in enumerate(reversed(list(messages)), start=1):
        if message.role == "user":
            entries.append(ChatEntry(id=str(index), user=message.text))
        else:
            entries.append(ChatEntry(id=str(index), assistant=message.text))
    return entries


def next_entry_id(last_id: Optional[str]) -> str:
    if not last_id:
        return "1"
    return str(int(last_id) + 1)


def can_reset(entries: List[ChatEntry]) -> bool:
    # Only the greeting shown: nothing to reset.
    return len(entries) > 1
