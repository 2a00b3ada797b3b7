"""Process-wide logging for the API server and the respondent client.

One stdout handler on the root logger; every `draftsync.*` module logger
propagates to it. Log lines use the `event key=value` shape the resolver,
promoter and scheduler emit. `LOG_LEVEL` overrides the default INFO level.
"""
from __future__ import annotations

import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Third-party loggers that are noisy at INFO
_QUIET = ("httpx", "httpcore", "sqlalchemy.engine")


def _build_config(level: str) -> Dict[str, Any]:
    server_loggers = {
        name: {"level": level, "handlers": ["stdout"], "propagate": False}
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access")
    }
    quiet_loggers = {name: {"level": "WARNING"} for name in _QUIET}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": _FORMAT}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "plain",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {**server_loggers, **quiet_loggers, "draftsync": {"level": level}},
    }


def configure_logging(level: str | None = None) -> None:
    """Install the handler once; a root logger that already has handlers is left alone."""
    if logging.getLogger().handlers:
        return
    resolved = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(resolved), int):
        resolved = "INFO"
    dictConfig(_build_config(resolved))
