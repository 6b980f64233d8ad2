from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol

from relay.errors import CredentialError


DEFAULT_ENV_MAPPING: Dict[str, str] = {
    "OpenAI-API-KEY": "OPENAI_API_KEY",
    "Assistant-ID": "OPENAI_ASSISTANT_ID",
}


@dataclass(frozen=True)
class SecretValue:
    value: str


@dataclass(frozen=True)
class Credentials:
    api_key: str
    assistant_id: str


class SecretStore(Protocol):
    async def get_secret_value(self, name: str) -> SecretValue:
        ...


class EnvSecretStore:
    """Resolves named secrets from environment variables (``.env`` included)."""

    def __init__(
        self,
        mapping: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.mapping = dict(mapping or DEFAULT_ENV_MAPPING)
        self.environ = environ if environ is not None else os.environ

    async def get_secret_value(self, name: str) -> SecretValue:
        env_name = self.mapping.get(name)
        if env_name is None:
            raise CredentialError(f"Unknown secret {name!r}")
        value = self.environ.get(env_name)
        if not value:
            raise CredentialError(f"Secret {name!r} is not set ({env_name})")
        return SecretValue(value=value)


async def load_credentials(
    store: SecretStore, *, api_key_name: str, assistant_id_name: str
) -> Credentials:
    api_key = (await store.get_secret_value(api_key_name)).value
    assistant_id = (await store.get_secret_value(assistant_id_name)).value
    return Credentials(api_key=api_key, assistant_id=assistant_id)
