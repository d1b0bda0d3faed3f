"""Configuration settings loaded from .env file."""

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings, loaded from .env file.

    Every value can be overridden by an environment variable of the same
    name (case-insensitive), e.g. ``CANON_CHECK_TIMEOUT_SECONDS=2.5``.
    """

    # Database
    sqlite_db_path: Path = Path("./data/narrative.db")

    # Canon checking
    canon_check_timeout_seconds: float = 10.0
    llm_canon_check_enabled: bool = False
    llm_model_canon: str = "claude-haiku-4-5"

    # Context compilation
    context_digest_chars: int = 160   # Per world element digest
    context_max_chars: int = 6000     # Rendered prompt block
    context_recent_events: int = 5    # Latest timeline events carried forward

    # Logging
    log_dir: Path = Path("./data/logs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("canon_check_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("canon_check_timeout_seconds must be > 0")
        return v

    @field_validator("context_digest_chars")
    @classmethod
    def validate_digest_chars(cls, v: int) -> int:
        if v < 20:
            raise ValueError("context_digest_chars must be >= 20")
        return v

    @field_validator("context_max_chars")
    @classmethod
    def validate_max_chars(cls, v: int) -> int:
        if v < 200:
            raise ValueError("context_max_chars must be >= 200")
        return v

    @field_validator("context_recent_events")
    @classmethod
    def validate_recent_events(cls, v: int) -> int:
        if v < 0:
            raise ValueError("context_recent_events must be >= 0")
        return v

    @field_validator("sqlite_db_path", "log_dir")
    @classmethod
    def ensure_parent_dirs(cls, v: Path) -> Path:
        v.parent.mkdir(parents=True, exist_ok=True)
        return v

    @model_validator(mode="after")
    def validate_digest_fits(self) -> "Settings":
        if self.context_digest_chars >= self.context_max_chars:
            raise ValueError(
                f"context_digest_chars ({self.context_digest_chars}) must be less than "
                f"context_max_chars ({self.context_max_chars})"
            )
        return self


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
