from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv


load_dotenv()


FAST_SCHEDULE: Tuple[int, ...] = (1, 2, 4, 8, 16, 32, 64, 128, 256)
COARSE_SCHEDULE: Tuple[int, ...] = (500, 1000, 2000)

RETRY_SCHEDULES = {
    "fast": FAST_SCHEDULE,
    "coarse": COARSE_SCHEDULE,
}


def _parse_delays(raw: Optional[str], default: Tuple[int, ...]) -> Tuple[int, ...]:
    if not raw:
        return default
    return tuple(int(part) for part in raw.split(",") if part.strip())


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Relay configuration read once from the environment (and .env).

    Covers the assistants API endpoint, retry and polling limits, the greeting
    posted into new threads and the debug switch. Secret values themselves are
    read by the secret store, only their names live here.
    """

    app_env: str = os.getenv("APP_ENV", "development")
    openai_api_url: str = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1")
    openai_beta_header: str = os.getenv("OPENAI_BETA_HEADER", "assistants=v2")
    api_key_secret: str = os.getenv("OPENAI_API_KEY_SECRET", "OpenAI-API-KEY")
    assistant_id_secret: str = os.getenv("ASSISTANT_ID_SECRET", "Assistant-ID")
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    retry_schedule: str = os.getenv("RETRY_SCHEDULE", "fast").lower()

    poll_max_iterations: int = int(os.getenv("POLL_MAX_ITERATIONS", "600"))
    poll_interval_ms: int = int(os.getenv("POLL_INTERVAL_MS", "200"))
    poll_retry_delays_ms: Tuple[int, ...] = _parse_delays(
        os.getenv("POLL_RETRY_DELAYS_MS"), (100, 200, 400, 800)
    )
    max_run_restarts: int = int(os.getenv("MAX_RUN_RESTARTS", "10"))
    run_restart_delay_ms: int = int(os.getenv("RUN_RESTART_DELAY_MS", "1000"))

    greeting_message: str = os.getenv(
        "GREETING_MESSAGE", "Hello, I am a helpful assistant"
    )

    debug: bool = _flag(os.getenv("RELAY_DEBUG"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def retry_delays_ms(self) -> Tuple[int, ...]:
        try:
            return RETRY_SCHEDULES[self.retry_schedule]
        except KeyError:
            raise ValueError(
                f"Unknown RETRY_SCHEDULE {self.retry_schedule!r}; "
                f"expected one of {sorted(RETRY_SCHEDULES)}"
            ) from None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
