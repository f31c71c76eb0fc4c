"""Settings for cron-spine.

All values can be overridden with ``CRONSPINE_``-prefixed environment
variables or a ``.env`` file, e.g. ``CRONSPINE_RETENTION_DAYS=30``.

Order of precedence (highest → lowest):
    1. Explicit keyword arguments (tests)
    2. Environment variables
    3. ``.env`` file
    4. Defaults below
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CronSpineSettings(BaseSettings):
    """Engine, transport and logging settings."""

    model_config = SettingsConfigDict(
        env_prefix="CRONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Network ──────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="Bind port")

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = Field(
        default=None,
        description="JSON log output; None auto-detects (JSON when stdout is not a tty)",
    )

    # ── Storage ──────────────────────────────────────────────────
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".cronspine",
        description="Directory for the SQLite database",
    )
    database_path: str | None = Field(
        default=None,
        description="SQLite file path or ':memory:'; defaults to <data_dir>/cronspine.db",
    )

    # ── Scheduling ───────────────────────────────────────────────
    timezone: str | None = Field(
        default=None,
        description="IANA zone for cron evaluation and display; None uses the system zone",
    )
    max_workers: int = Field(default=10, ge=1, description="Job worker threads")
    misfire_threshold_seconds: float = Field(default=60.0, ge=0)
    max_idle_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Upper bound on how long the timing thread sleeps between ticks",
    )
    allow_concurrent_execution: bool = Field(
        default=True,
        description="Fire a trigger again while its previous firing is still running",
    )
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    # ── History ──────────────────────────────────────────────────
    retention_days: int = Field(default=10, description="<= 0 disables the purge")
    retention_schedule: str = Field(default="0 0 0 * * ?", description="Daily purge cron")
    history_limit: int = Field(default=20, ge=1)

    # ── HTTP job ─────────────────────────────────────────────────
    http_connect_timeout: float = Field(default=10.0, gt=0)
    http_call_timeout: float = Field(default=30.0, gt=0)
    http_status_failure: bool = Field(
        default=False,
        description="Record 4xx/5xx responses as FAILURE instead of SUCCESS",
    )

    # ── API ──────────────────────────────────────────────────────
    api_prefix: str = "/api"
    api_title: str = "cron-spine API"
    cors_origins: list[str] = Field(default=["*"])

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def resolved_database_path(self) -> str:
        """Return the SQLite path, creating ``data_dir`` when a file path is used."""
        if self.database_path:
            return self.database_path
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return str(self.data_dir / "cronspine.db")


@lru_cache(maxsize=1)
def get_settings() -> CronSpineSettings:
    """Settings, loaded once per process and cached."""
    return CronSpineSettings()
