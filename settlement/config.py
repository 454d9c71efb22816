"""
Application Configuration.

Pydantic Settings model for process-level settings of the settlement
engine: logging, the default rule snapshot location and audit switches.
Loaded from environment variables (prefix ``SETTLEMENT_``) and ``.env``.

Reward and commission rules are deliberately *not* part of this object.
They travel as an immutable ``RuleSnapshot`` argument into every
calculation.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # empty -> console only
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    # --- Rules ---
    RULES_SNAPSHOT_PATH: str = ""

    # --- Audit ---
    AUDIT_LOG_ENABLED: bool = True

    # --- Release service ---
    RELEASE_LOCK_TIMEOUT_S: float = Field(default=5.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="SETTLEMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _normalise_log_level(self) -> "AppConfig":
        """Fall back to INFO when ``LOG_LEVEL`` is not a known level name."""
        level = self.LOG_LEVEL.upper()
        if not isinstance(logging.getLevelName(level), int):
            logging.getLogger("settlement.config").warning(
                "Unknown LOG_LEVEL '%s', falling back to INFO.", self.LOG_LEVEL
            )
            level = "INFO"
        self.LOG_LEVEL = level
        return self

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.LOG_LEVEL)

    @property
    def rules_snapshot_path(self) -> Optional[Path]:
        return Path(self.RULES_SNAPSHOT_PATH) if self.RULES_SNAPSHOT_PATH else None


# ---------------------------------------------------------------------------
# Module-level cached factory (process settings only, never rule snapshots)
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` instance.

    Uses a check-lock-check pattern so concurrent first calls build a
    single instance.  Prefer constructor injection of ``AppConfig`` in new
    code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance


def reset_config() -> None:
    """Drop the cached instance so the next ``get_config()`` re-reads the env."""
    global _config_instance
    with _config_lock:
        _config_instance = None
