"""Configuration for the draft synchronization service and its client.

Every setting is looked up in four layers, highest first:

1. environment variables (e.g. ``DATABASE_URL``, ``AUTOSAVE_POLICY``)
2. one-value text files under ``config/`` (e.g. ``config/database.url``)
3. ``draftsync_config.json`` at the working directory root
4. development defaults (in-memory SQLite, debounced autosave)

Pydantic models validate the merged result; an invalid value fails startup.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator


CONFIG_DIR = Path("config")
ROOT_CONFIG = Path("draftsync_config.json")
logger = logging.getLogger(__name__)

AUTOSAVE_POLICIES = {"interval", "debounce"}
DEFAULT_DSN = "sqlite+pysqlite:///:memory:"


def _truthy(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


class DatabaseConfig(BaseModel):
    dsn: str
    auto_apply_migrations: bool = Field(default=True)

    @field_validator("dsn")
    @classmethod
    def dsn_must_be_non_empty(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("database.dsn must be a non-empty string")
        return v


class AutosaveConfig(BaseModel):
    policy: str = Field(default="debounce")
    interval_seconds: float = Field(default=10.0, gt=0)
    debounce_seconds: float = Field(default=3.0, gt=0)
    failure_threshold: int = Field(default=3, ge=1)

    @field_validator("policy")
    @classmethod
    def policy_must_be_allowed(cls, v: str) -> str:
        if v not in AUTOSAVE_POLICIES:
            raise ValueError(f"autosave.policy must be one of {sorted(AUTOSAVE_POLICIES)}")
        return v


class CorsConfig(BaseModel):
    allow_origins: List[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseModel):
    database: DatabaseConfig
    autosave: AutosaveConfig
    cors: CorsConfig


class _Layers:
    """Resolves one setting across env, config/ files and the JSON base."""

    def __init__(self, config_dir: Path, root_config: Path) -> None:
        self.config_dir = config_dir
        self.base = self._load_json(root_config)

    @staticmethod
    def _load_json(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("config.json_unreadable path=%s error=%s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _file(self, name: str) -> Optional[str]:
        path = self.config_dir / name
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8").strip() or None
        except (OSError, UnicodeDecodeError) as e:
            # Unreadable override: fall through to the next layer
            logger.warning("config.override_unreadable path=%s error=%s", path, e)
            return None

    def from_json(self, dotted: str) -> Optional[str]:
        cur: Any = self.base
        for key in dotted.split("."):
            if not isinstance(cur, dict) or key not in cur:
                return None
            cur = cur[key]
        if cur is None:
            return None
        if isinstance(cur, list):
            return ",".join(str(v) for v in cur)
        if isinstance(cur, bool):
            return "true" if cur else "false"
        return str(cur)

    def get(self, env: Sequence[str], name: str, default: str) -> str:
        for key in env:
            value = os.environ.get(key)
            if value:
                return value
        return self._file(name) or self.from_json(name) or default


def load_config() -> AppConfig:
    layers = _Layers(CONFIG_DIR, ROOT_CONFIG)

    dsn = (
        layers.get(("TEST_DATABASE_URL", "DATABASE_URL"), "database.url", "")
        or layers.from_json("database.dsn")
        or DEFAULT_DSN
    )
    auto_apply = layers.get(("AUTO_APPLY_MIGRATIONS",), "database.auto_apply_migrations", "true")

    policy = layers.get(("AUTOSAVE_POLICY",), "autosave.policy", "debounce").strip().lower()
    interval = layers.get(("AUTOSAVE_INTERVAL_SECONDS",), "autosave.interval_seconds", "10")
    debounce = layers.get(("AUTOSAVE_DEBOUNCE_SECONDS",), "autosave.debounce_seconds", "3")
    threshold = layers.get(("AUTOSAVE_FAILURE_THRESHOLD",), "autosave.failure_threshold", "3")

    origins_text = layers.get(("CORS_ALLOW_ORIGINS",), "cors.allow_origins", "*")
    origins = [o.strip() for o in origins_text.split(",") if o.strip()]

    try:
        return AppConfig(
            database=DatabaseConfig(dsn=dsn, auto_apply_migrations=_truthy(auto_apply)),
            autosave=AutosaveConfig(
                policy=policy,
                interval_seconds=float(interval.strip()),
                debounce_seconds=float(debounce.strip()),
                failure_threshold=int(threshold.strip()),
            ),
            cors=CorsConfig(allow_origins=origins or ["*"]),
        )
    except (PydanticValidationError, ValueError) as e:
        logger.error("config.invalid error=%s", e)
        raise


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "AutosaveConfig",
    "CorsConfig",
    "load_config",
]
