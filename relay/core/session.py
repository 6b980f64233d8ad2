"""Per-conversation session state.

The thread id is the only state kept locally; messages and runs live on the
remote API. Sessions are keyed by client id so conversations of different
users never share a thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ConversationSession:
    thread_id: Optional[str] = None


class SessionRegistry:
    """In-process map of client id to session. Not persisted.

    Only ``get`` registers sessions; read-only paths use ``lookup``.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, ConversationSession] = {}

    def get(self, client_id: str, thread_id: Optional[str] = None) -> ConversationSession:
        session = self._sessions.get(client_id)
        if session is None:
            session = ConversationSession()
            self._sessions[client_id] = session
        # A thread id held by the caller (e.g. browser storage) wins.
        if thread_id:
            session.thread_id = thread_id
        return session

    def lookup(self, client_id: str, thread_id: Optional[str] = None) -> ConversationSession:
        """Like ``get`` but never registers a new client.

        Unknown clients get a detached session, empty unless ``thread_id`` is given.
        """
        session = self._sessions.get(client_id)
        if session is None:
            return ConversationSession(thread_id=thread_id)
        if thread_id:
            session.thread_id = thread_id
        return session

    def reset(self, client_id: str) -> None:
        self._sessions.pop(client_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
