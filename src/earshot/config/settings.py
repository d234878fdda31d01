"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./earshot.db"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600

    @field_validator("pool_size", "max_overflow", "pool_timeout", "pool_recycle")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 0:
            raise ValueError("pool settings must not be negative")
        return v


# Hey future me - the Spotify app credentials are NOT per-user! client_id/secret identify the
# app, the per-user tokens live encrypted in platform_accounts. redirect_uri must match the one
# registered in the Spotify dashboard EXACTLY (trailing slash included) or the code exchange
# fails with "invalid_grant".
class SpotifySettings(BaseModel):
    """Spotify OAuth application credentials."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8000/api/auth/spotify/callback"
    scopes: list[str] = Field(
        default_factory=lambda: [
            "user-read-currently-playing",
            "user-read-playback-state",
            "user-read-recently-played",
        ]
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id.strip() and self.client_secret.strip())


class SecuritySettings(BaseModel):
    """Secrets used to protect stored credentials."""

    # Blank is allowed at startup so health checks work; the vault refuses to
    # seal or unseal without it.
    encryption_key: str = ""


# Yo, these are the knobs of the now-playing pipeline. refresh_skew is how early we refresh an
# access token before it expires (5 min), coalesce_window is how long the same track keeps
# counting as ONE listen (10 min). max_concurrency/user_timeout bound the scheduled fan-out so
# one slow user can't stall the whole cycle.
class PollingSettings(BaseModel):
    """Now-playing polling settings."""

    enabled: bool = True
    interval_seconds: int = 60
    refresh_skew_seconds: int = 300
    coalesce_window_seconds: int = 600
    max_concurrency: int = 5
    user_timeout_seconds: float = 20.0

    @field_validator("interval_seconds", "max_concurrency")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class ObservabilitySettings(BaseModel):
    """Logging output settings."""

    log_json_format: bool = False


class APISettings(BaseModel):
    """HTTP surface settings."""

    host: str = "0.0.0.0"  # nosec B104
    port: int = 8000
    # Where the browser lands after the OAuth callback finished
    settings_redirect_url: str = "/"
    cors_origins: list[str] = Field(default_factory=list)


class Settings(BaseSettings):
    """Root settings object.

    Nested sections are read from env vars with a double underscore, e.g.
    ``SPOTIFY__CLIENT_ID`` or ``POLLING__INTERVAL_SECONDS``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "earshot"
    debug: bool = False
    log_level: str = "INFO"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    api: APISettings = Field(default_factory=APISettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
