"""
Configuration management for the StreamHooks service.

Uses pydantic-settings to load configuration from environment variables
(and an optional ``.env`` file). Settings are read once at process start
by the orchestrator and passed to every component that needs them; no
component reads the environment on its own.
"""

from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "StreamHooks"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Sessions
    SESSION_SECRET: str
    SESSION_COOKIE_NAME: str = "streamhooks_session"
    SESSION_COOKIE_MAX_AGE: int = 86400 * 7  # 7 days
    SESSION_COOKIE_SECURE: bool = False

    # Twitch application credentials
    CLIENT_ID: str
    CLIENT_SECRET: str

    # Public host name used to build webhook callback URLs
    HOST_NAME: str

    # OAuth Authorization Code flow
    REDIRECT_URI: str
    OAUTH_AUTHORIZE_URL: str = "https://id.twitch.tv/oauth2/authorize"
    OAUTH_TOKEN_URL: str = "https://id.twitch.tv/oauth2/token"
    OAUTH_SCOPES: List[str] = [
        "channel:read:subscriptions",
        "user:read:email",
        "moderation:read",
    ]
    OAUTH_FORCE_VERIFY: bool = True  # Always show the consent screen

    # Listeners
    BIND_HOST: str = "0.0.0.0"
    HTTP_PORT: int
    HTTPS_PORT: int
    LISTENER_BIND_TIMEOUT: float = 10.0  # Seconds to wait for a bound listener to report started

    # TLS material (all three are required to enable the HTTPS listener)
    CERT_KEY_PATH: Optional[str] = None
    CERT_PATH: Optional[str] = None
    CERT_CHAIN_PATH: Optional[str] = None

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///database/data.sqlite"
    DB_ECHO: bool = False  # Log all SQL statements (noisy)

    # Twitch Helix / WebSub hub
    TWITCH_API_URL: str = "https://api.twitch.tv/helix"
    WEBHOOK_HUB_URL: str = "https://api.twitch.tv/helix/webhooks/hub"
    WEBHOOK_BASE_PATH: str = "webhooks"
    WEBHOOK_LEASE_SECONDS: int = 864000  # Hub maximum (10 days)
    WEBHOOK_RENEWAL_MARGIN_SECONDS: int = 3600  # Renew one hour before expiry

    # Initial subscription seeding
    SEED_STREAM_COUNT: int = 10
    SEED_MAX_RETRIES: int = 3

    # Outbound HTTP
    HTTP_TIMEOUT: float = 10.0

    # Shutdown: per-step deadline in seconds, 0 disables the deadline
    SHUTDOWN_STEP_TIMEOUT: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # "json" or "text"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("OAUTH_SCOPES", mode="before")
    @classmethod
    def parse_scopes(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse space or comma separated scopes into a list."""
        if isinstance(v, str):
            return [scope for scope in v.replace(",", " ").split() if scope]
        elif isinstance(v, list):
            return v
        return []

    @field_validator("CERT_KEY_PATH", "CERT_PATH", "CERT_CHAIN_PATH", mode="before")
    @classmethod
    def blank_path_is_unset(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty TLS path variables as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("HTTP_PORT", "HTTPS_PORT")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Ports must fit in 16 bits; 0 asks the OS for an ephemeral port."""
        if not 0 <= v <= 65535:
            raise ValueError(f"port out of range: {v}")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @property
    def shutdown_step_timeout(self) -> Optional[float]:
        """Per-step teardown deadline, or None when disabled."""
        return self.SHUTDOWN_STEP_TIMEOUT if self.SHUTDOWN_STEP_TIMEOUT > 0 else None

    @property
    def webhook_base_url(self) -> str:
        """Public HTTPS base URL for webhook callbacks."""
        return f"https://{self.HOST_NAME}/{self.WEBHOOK_BASE_PATH.strip('/')}"
