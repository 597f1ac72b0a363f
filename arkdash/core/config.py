"""Client configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "ARK Dashboard Client"
    debug: bool = False

    # Backend API
    api_url: str = "http://localhost:4000"
    auth_token: str = ""  # Bearer token issued at login
    http_timeout: float = 30.0  # Seconds per HTTP request
    health_path: str = "/health"
    jobs_path: str = "/jobs"

    # ==========================================================================
    # Push Channel (Socket.IO)
    # ==========================================================================
    socket_path: str = "/socket.io/"
    socket_transports: list[str] = ["websocket", "polling"]  # Preference order
    handshake_timeout: float = 20.0  # Seconds to wait for the Socket.IO handshake
    probe_timeout: float = 5.0  # Seconds for the pre-connect /health probe

    # Reconnection bounds
    reconnect_max_attempts: int = 5
    reconnect_initial_delay: float = 1.0  # Seconds before the first retry
    reconnect_max_delay: float = 30.0  # Backoff ceiling in seconds

    # ==========================================================================
    # Job Polling
    # ==========================================================================
    job_poll_interval: float = 2.0  # Seconds between status queries
    job_default_expected_steps: int = 5  # Progress entries for unknown job types

    @property
    def is_authenticated(self) -> bool:
        """Check if a bearer token is configured."""
        return bool(self.auth_token)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
