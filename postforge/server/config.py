# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Server configuration with environment variable support."""
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """Server configuration with environment variable support.

    All settings can be overridden via environment variables with POSTFORGE_ prefix.
    Example: POSTFORGE_PORT=9000 overrides the port setting.
    """

    model_config = SettingsConfigDict(
        env_prefix="POSTFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server binding
    host: str = Field(
        default="127.0.0.1",
        description="Host to bind the server to",
    )
    port: int = Field(
        default=8430,
        ge=1,
        le=65535,
        description="Port to bind the server to",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum log level",
    )

    # Database
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".postforge" / "postforge.db",
        description="Path to SQLite database file",
    )

    # Engine waits
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Interval between store reads while waiting for a decision",
    )
    review_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Human review wait before the job is auto-approved (30 min default)",
    )
    deploy_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Deploy approval wait before the engine stops waiting",
    )

    # Progress feed
    feed_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Interval between progress feed polls",
    )
    feed_error_backoff_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Delay before the next feed poll after a read error",
    )

    # Stage handlers
    handlers: str = Field(
        default="postforge.pipeline.noop:create_noop_handlers",
        description="Stage handler factory as 'module.path:factory'",
    )

    # Scheduler
    cron_secret: str | None = Field(
        default=None,
        description="Bearer token required by the cron trigger endpoint",
    )
    scheduler_interval_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Run due schedules in-process at this interval (disabled when unset)",
    )
    shutdown_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for each job task after cancellation on shutdown",
    )
