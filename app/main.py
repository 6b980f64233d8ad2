from __future__ import annotations

from typing import List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from app.deps import get_manager, get_orchestrator, get_registry
from config.logging_config import logger, setup_logging
from config.settings import get_settings
from relay.core.session import SessionRegistry
from relay.orchestrator import PollingOrchestrator, PollState
from relay.presentation import (
    RESET_ERROR_MESSAGE,
    ChatEntry,
    can_reset,
    next_entry_id,
    to_chat_entries,
)
from relay.results import (
    ChatMessage,
    Failure,
    InitOutcome,
    PollOutcome,
    SendOutcome,
)
from relay.session_manager import ConversationManager


setup_logging()

app = FastAPI(title="Assistant Relay", version="1.0.0")

# CORS: allow local frontend during development
settings = get_settings()
if settings.app_env.lower() in {"dev", "development", "local"}:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class SessionRef(BaseModel):
    client_id: str = Field(..., description="Unique identifier for user/session")
    thread_id: Optional[str] = Field(
        default=None,
        description="Thread id kept by the caller; omit to use the server-side session",
    )


class MessageRequest(SessionRef):
    message: str = Field(..., description="User's latest message")
    last_entry_id: Optional[str] = Field(
        default=None,
        pattern=r"^\d+$",
        description="Id of the last chat entry currently displayed",
    )

    @field_validator("message")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message must not be empty")
        return value


class HistoryView(BaseModel):
    success: bool = True
    thread_id: str
    messages: List[ChatMessage]
    entries: List[ChatEntry]
    can_reset: bool


class SubmitResponse(BaseModel):
    success: bool
    state: PollState
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    entries: List[ChatEntry]


class ResetResponse(BaseModel):
    success: bool
    thread_id: Optional[str] = None
    entries: List[ChatEntry]
    can_reset: bool = False


@app.post("/chat/initialize")
async def initialize_chat(
    req: SessionRef,
    registry: SessionRegistry = Depends(get_registry),
    manager: ConversationManager = Depends(get_manager),
) -> InitOutcome:
    session = registry.get(req.client_id, req.thread_id)
    result = await manager.initialize(session)
    if isinstance(result, Failure):
        logger.warning("Chat could not be initialized for %s (%s)", req.client_id, result.kind.value)
    return result


@app.post("/chat/messages")
async def start_message(
    req: MessageRequest,
    registry: SessionRegistry = Depends(get_registry),
    manager: ConversationManager = Depends(get_manager),
) -> SendOutcome:
    session = registry.get(req.client_id, req.thread_id)
    return await manager.send_message(req.message, session)


@app.get("/chat/runs/{run_id}")
async def poll_run_status(
    run_id: str,
    client_id: str,
    thread_id: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
    manager: ConversationManager = Depends(get_manager),
) -> PollOutcome:
    session = registry.lookup(client_id, thread_id)
    return await manager.poll_status(run_id, session)


@app.get("/chat/history")
async def get_chat_history(
    client_id: str,
    thread_id: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
    manager: ConversationManager = Depends(get_manager),
) -> Union[HistoryView, Failure]:
    session = registry.lookup(client_id, thread_id)
    result = await manager.fetch_history(session)
    if isinstance(result, Failure):
        logger.warning("Chat history unavailable for %s (%s)", client_id, result.kind.value)
        return result

    entries = to_chat_entries(result.messages)
    return HistoryView(
        thread_id=session.thread_id,
        messages=result.messages,
        entries=entries,
        can_reset=can_reset(entries),
    )


@app.post("/chat")
async def chat(
    req: MessageRequest,
    registry: SessionRegistry = Depends(get_registry),
    orchestrator: PollingOrchestrator = Depends(get_orchestrator),
) -> SubmitResponse:
    session = registry.get(req.client_id, req.thread_id)
    user_entry = ChatEntry(
        id=next_entry_id(req.last_entry_id),
        user=req.message,
    )
    logger.info(
        "Incoming chat: client_id=%s thread_id=%s message_len=%s",
        req.client_id,
        session.thread_id,
        len(req.message),
    )

    try:
        outcome = await orchestrator.submit(req.message, session)
    except Exception as e:
        logger.exception("Chat processing failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    reply_text = outcome.response if outcome.succeeded else outcome.message
    reply_entry = ChatEntry(id=next_entry_id(user_entry.id), assistant=reply_text)
    logger.info(
        "Chat finished: state=%s iterations=%s restarts=%s",
        outcome.state.value,
        outcome.iterations,
        outcome.restarts,
    )
    return SubmitResponse(
        success=outcome.succeeded,
        state=outcome.state,
        thread_id=session.thread_id,
        run_id=outcome.run_id,
        entries=[user_entry, reply_entry],
    )


@app.post("/chat/reset")
async def reset_chat(
    req: SessionRef,
    registry: SessionRegistry = Depends(get_registry),
    manager: ConversationManager = Depends(get_manager),
) -> ResetResponse:
    logger.info(
        "Resetting chat for %s (%s sessions registered)", req.client_id, len(registry)
    )
    registry.reset(req.client_id)
    session = registry.get(req.client_id)

    result = await manager.initialize(session)
    if not isinstance(result, Failure):
        result = await manager.fetch_history(session)
    if isinstance(result, Failure):
        logger.warning("Chat reset failed for %s (%s)", req.client_id, result.kind.value)
        return ResetResponse(
            success=False,
            entries=[ChatEntry(id="1", assistant=RESET_ERROR_MESSAGE)],
        )

    entries = to_chat_entries(result.messages)
    return ResetResponse(
        success=True,
        thread_id=session.thread_id,
        entries=entries,
        can_reset=can_reset(entries),
    )


@app.get("/health")
def health():
    return {"status": "ok"}
