"""Runtime configuration for the streaming server, coordinator and client."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StreamingConfig(BaseModel):
    """Top-level configuration loaded from defaults.toml.

    Controls where the ledger lives, how the HTTP server binds, which model
    the default producer calls, and the timeout policies.
    """

    db_path: str = Field(
        default="~/.persistream/streams.db",
        description="Path to the SQLite ledger file",
    )
    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8420, gt=0, le=65535, description="Server port")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed to call the HTTP endpoints",
    )
    model: str = Field(
        default="gpt-4o-mini", description="LiteLLM model id for the default producer"
    )
    system_prompt: str = Field(
        default="You are a helpful assistant. Answer in markdown.",
        description="System prompt sent with every generation",
    )
    api_key_env: str = Field(
        default="", description="Env var holding the provider API key (empty = LiteLLM default)"
    )
    history: int = Field(
        default=0, ge=0, description="Number of earlier finished streams sent as context"
    )
    producer_timeout: float = Field(
        default=0.0, ge=0.0, description="Seconds before production is cut off (0 = never)"
    )
    stale_after: float = Field(
        default=0.0, ge=0.0,
        description="Seconds without writes before the watchdog times a stream out (0 = off)",
    )
    sweep_interval: float = Field(
        default=30.0, gt=0.0, description="Seconds between watchdog sweeps"
    )
    poll_interval: float = Field(
        default=0.5, gt=0.0, description="Seconds between client refreshes of the persisted body"
    )
