from __future__ import annotations

import logging

from config.settings import get_settings


LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"

_LOGGING_CONFIGURED = False

logger = logging.getLogger("assistant_relay")


def setup_logging() -> None:
    """Configure the shared ``assistant_relay`` logger.

    Retry and diagnostic messages are emitted at DEBUG and only show up when
    RELAY_DEBUG is set; otherwise LOG_LEVEL (default INFO) applies.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    settings = get_settings()
    if settings.debug:
        level_value = logging.DEBUG
    else:
        level_value = getattr(logging, settings.log_level.upper(), logging.INFO)

    logger.setLevel(level_value)

    # Attach a console handler only when nothing upstream (uvicorn, pytest) has one.
    root_logger = logging.getLogger()
    if not root_logger.handlers and not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    _LOGGING_CONFIGURED = True
