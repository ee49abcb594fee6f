"""
Configuration for the Block Explorer.

Uses pydantic-settings for environment variable loading.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Explorer configuration loaded from environment."""

    # Ledger host connection
    ledger_url: str = Field(default="http://localhost:8545", description="Ledger HTTP RPC URL")
    call_timeout: float = Field(default=10.0, gt=0, description="Timeout per ledger call, seconds")
    max_concurrency: int = Field(default=16, ge=1, description="Concurrent ledger lookups")

    # Optional Kafka notification source (relay topic) instead of the live endpoint
    kafka_brokers: str | None = Field(default=None, description="Kafka brokers for the relay topic")
    kafka_topic: str = Field(default="blockledger-notifications", description="Relay topic")

    # Refresh behaviour
    refresh_on_startup: bool = Field(default=True, description="Build the view at startup")
    live_refresh: bool = Field(default=True, description="Refresh on every new notification")
    live_retry_delay: float = Field(default=1.0, gt=0, description="Re-subscribe delay, seconds")

    # Presentation
    default_order: Literal["desc", "asc"] = Field(default="desc", description="Default block order")

    # Explorer settings
    host: str = Field(default="0.0.0.0", description="Explorer bind host")
    port: int = Field(default=8080, description="Explorer bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "EXPLORER_"}
