"""Environment-backed settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

from showcase.core.errors import ConfigError

DEFAULT_DB_FILE_NAME = "db.sqlite"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _default_database_url() -> str:
    """SQLite file next to the working directory unless DATABASE_URL is set."""
    db_file = os.getenv("DB_FILE_NAME", DEFAULT_DB_FILE_NAME)
    return f"sqlite+aiosqlite:///./{db_file}"


@dataclass
class Settings:
    """Application settings loaded from environment variables with safe defaults."""

    app_name: str = "Showcase API"
    env: str = "development"
    log_level: str = "INFO"
    port: int = 3000
    cors_origins: list[str] = field(default_factory=list)
    scrape_api_keys: list[str] = field(default_factory=list)

    github_token: str = ""
    github_repo_owner: str = "sandhikagalih"
    github_repo_name: str = "project-kalian"
    github_timeout_seconds: float = 20.0
    github_rate_limit: float = 5.0

    database_url: str = f"sqlite+aiosqlite:///./{DEFAULT_DB_FILE_NAME}"
    concurrency_limit: int = 5

    screenshot_dir: str = "screenshots"
    screenshot_max_age_seconds: float = 24 * 60 * 60
    capture_timeout_seconds: float = 10.0
    capture_delay_seconds: float = 2.0

    scrape_interval_minutes: float = 0.0
    default_season: int = 5

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.concurrency_limit < 1:
            raise ConfigError("CONCURRENCY_LIMIT must be >= 1")
        if self.capture_timeout_seconds <= 0:
            raise ConfigError("CAPTURE_TIMEOUT_SECONDS must be > 0")
        if self.capture_delay_seconds < 0:
            raise ConfigError("CAPTURE_DELAY_SECONDS must be >= 0")
        if self.screenshot_max_age_seconds < 0:
            raise ConfigError("SCREENSHOT_MAX_AGE_SECONDS must be >= 0")
        if self.github_timeout_seconds <= 0:
            raise ConfigError("GITHUB_TIMEOUT_SECONDS must be > 0")
        if self.scrape_interval_minutes < 0:
            raise ConfigError("SCRAPE_INTERVAL_MINUTES must be >= 0")
        if not self.github_repo_owner or not self.github_repo_name:
            raise ConfigError("GITHUB_REPO_OWNER and GITHUB_REPO_NAME must be set")

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from environment variables (and a local .env file)."""
        load_dotenv()
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            env=os.getenv("ENV", cls.env),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            port=_env_int("PORT", cls.port),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS")),
            scrape_api_keys=_split_csv(os.getenv("SCRAPE_API_KEY")),
            github_token=os.getenv("GITHUB_TOKEN", "").strip(),
            github_repo_owner=os.getenv("GITHUB_REPO_OWNER", cls.github_repo_owner),
            github_repo_name=os.getenv("GITHUB_REPO_NAME", cls.github_repo_name),
            github_timeout_seconds=_env_float("GITHUB_TIMEOUT_SECONDS", cls.github_timeout_seconds),
            github_rate_limit=_env_float("GITHUB_RATE_LIMIT", cls.github_rate_limit),
            database_url=os.getenv("DATABASE_URL") or _default_database_url(),
            concurrency_limit=_env_int("CONCURRENCY_LIMIT", cls.concurrency_limit),
            screenshot_dir=os.getenv("SCREENSHOT_DIR", cls.screenshot_dir),
            screenshot_max_age_seconds=_env_float(
                "SCREENSHOT_MAX_AGE_SECONDS", cls.screenshot_max_age_seconds
            ),
            capture_timeout_seconds=_env_float(
                "CAPTURE_TIMEOUT_SECONDS", cls.capture_timeout_seconds
            ),
            capture_delay_seconds=_env_float("CAPTURE_DELAY_SECONDS", cls.capture_delay_seconds),
            scrape_interval_minutes=_env_float(
                "SCRAPE_INTERVAL_MINUTES", cls.scrape_interval_minutes
            ),
            default_season=_env_int("DEFAULT_SEASON", cls.default_season),
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings.from_env()
