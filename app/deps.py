from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import AsyncIterator

import httpx
from fastapi import Depends

from config.settings import get_settings
from relay.core.secrets import EnvSecretStore, SecretStore
from relay.core.session import SessionRegistry
from relay.orchestrator import PollingOrchestrator
from relay.retry import Sleep
from relay.session_manager import ConversationManager, build_manager


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Short-lived AsyncClient for calls to the assistants API."""
    async with httpx.AsyncClient(timeout=get_settings().http_timeout_seconds) as client:
        yield client


@lru_cache(maxsize=1)
def get_secret_store() -> SecretStore:
    return EnvSecretStore()


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry()


def get_sleep() -> Sleep:
    return asyncio.sleep


def get_manager(
    http: httpx.AsyncClient = Depends(get_http_client),
    secrets: SecretStore = Depends(get_secret_store),
    sleep: Sleep = Depends(get_sleep),
) -> ConversationManager:
    return build_manager(http, secrets, get_settings(), retry_sleep=sleep)


def get_orchestrator(
    manager: ConversationManager = Depends(get_manager),
    sleep: Sleep = Depends(get_sleep),
) -> PollingOrchestrator:
    return PollingOrchestrator.from_settings(manager, get_settings(), sleep=sleep)
