"""CivicTrack runtime settings (Pydantic v2 Settings).

Every tunable lives here so that:

* Environment overrides work (``CIVIC_DB_FILENAME``, ``CIVIC_RETRY_MAX_ATTEMPTS``, ...).
* Tests can inject a custom root via ``Settings(repo_root=tmp_path)``.
* Long-lived callers share one instance through :func:`get_settings`.
* The retry coordinator and bulk executor share one source of defaults.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from civictrack.core.paths import find_repo_root
from civictrack.core.retry import RetryPolicy


class Settings(BaseSettings):
    """All runtime configuration for CivicTrack."""

    model_config = SettingsConfigDict(
        env_prefix="CIVIC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Locations ───────────────────────────────────────────
    repo_root: Path | None = None
    data_dir: Path | None = None
    exports_dir: Path | None = None
    db_filename: str = "civictrack.db"

    # ── Logging ─────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True

    # ── Retry coordinator ───────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_max_delay_ms: int = Field(default=10000, ge=0)

    # ── Bulk executor ───────────────────────────────────────
    bulk_max_concurrency: int = Field(default=10, ge=1)

    # ── Notes guard ─────────────────────────────────────────
    notes_max_length: int = Field(default=2000, ge=1)

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        if self.repo_root is None:
            self.repo_root = find_repo_root()
        if self.data_dir is None:
            self.data_dir = self.repo_root / "data"
        if self.exports_dir is None:
            self.exports_dir = self.repo_root / "exports"
        return self

    @property
    def db_path(self) -> Path:
        assert self.data_dir is not None  # guaranteed after validation
        return self.data_dir / self.db_filename

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
        )

    def ensure_dirs(self) -> None:
        for d in (self.data_dir, self.exports_dir):
            assert d is not None
            d.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings(**overrides: object) -> Settings:
    """Settings for the running process, resolved once.

    The root lookup walks the filesystem, so repeated calls reuse the
    first result.  The CLI and tests build ``Settings(...)`` directly
    because their root changes between invocations.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
