"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with VOTECAST_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: the same settings are read by two kinds of processes. Request
handlers (producers) only need the queue location; the broadcast server
needs everything. Both must agree on the queue paths and the app secret.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via VOTECAST_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8080

    # Auth: HMAC key shared with the request-handling side
    app_secret: str = "change-me-in-production"
    token_ttl_seconds: int = 300

    # Event queue
    queue_backend: Literal["file", "redis"] = "file"
    queue_file: str = "/tmp/votecast-ws-queue.json"
    queue_lock_file: str = "/tmp/votecast-ws-queue.lock"
    queue_max_size: int = 1000

    # Redis (only used when queue_backend == "redis")
    redis_url: str = "redis://localhost:6379/0"
    redis_queue_key: str = "votecast:ws:event_queue"
    redis_socket_timeout_seconds: float = 1.0

    # Broadcast loop
    drain_interval_seconds: float = 0.1
    stats_interval_seconds: float = 30.0
    send_timeout_seconds: float = 5.0

    # Liveness marker
    pid_file: str = "/tmp/votecast-ws.pid"

    model_config = {"env_prefix": "VOTECAST_"}

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure the token secret is changed in non-development environments."""
        if (
            self.environment != "development"
            and self.app_secret == "change-me-in-production"
        ):
            raise ValueError(
                "VOTECAST_APP_SECRET must be set to a secure value in "
                "non-development environments. Generate one with: "
                'python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        if self.queue_max_size < 1:
            raise ValueError("VOTECAST_QUEUE_MAX_SIZE must be at least 1")
        return self


# Singleton, import this everywhere
settings = Settings()
