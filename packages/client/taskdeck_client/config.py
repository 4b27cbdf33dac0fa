"""
Configuration loading and validation.

Loads listener configuration from a YAML file with environment variable
resolution for secrets (passwords are never stored in config files).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from .machine import ReconnectPolicy


class ServerConfig(BaseModel):
    url: str = "http://localhost:8000"
    verify_tls: bool = True
    request_timeout_seconds: int = 30

    @property
    def ws_url(self) -> str:
        base = self.url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/api/ws"


class CredentialsConfig(BaseModel):
    email: str
    password_env: str = "TASKDECK_PASSWORD"

    @property
    def password(self) -> str | None:
        return os.environ.get(self.password_env)


class ReconnectConfig(BaseModel):
    base_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=5, ge=0)

    def policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            base_delay=self.base_delay_seconds,
            max_delay=self.max_delay_seconds,
            max_attempts=self.max_attempts,
        )


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9091


class ListenerConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    credentials: CredentialsConfig
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> ListenerConfig:
    """Load and validate listener configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return ListenerConfig.model_validate(raw)
