from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_APPROVAL_SOURCE,
    DEFAULT_ROW_TOLERANCE,
    DEFAULT_TICK_INTERVAL,
    TRIGGER_KEY_ALIASES,
)


class RedisConfig(BaseModel):
    """Configuration for the Redis push channel."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class ChannelConfig(BaseModel):
    """Push channel configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = Field(default_factory=RedisConfig)


class ApiConfig(BaseModel):
    """Pull API settings for run history and approval actions."""

    base_url: Optional[str] = None
    timeout: float = 10.0


class ViewConfig(BaseModel):
    """Projection tuning knobs."""

    tick_interval: float = DEFAULT_TICK_INTERVAL
    row_tolerance: float = DEFAULT_ROW_TOLERANCE
    trigger_aliases: List[str] = Field(default_factory=lambda: list(TRIGGER_KEY_ALIASES))


class ApprovalConfig(BaseModel):
    """Identity attached to resume/reject decisions."""

    approver: Optional[str] = None
    source: str = DEFAULT_APPROVAL_SOURCE


class RunviewConfig(BaseModel):
    """Top-level configuration model."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    view: ViewConfig = Field(default_factory=ViewConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)


def load_config(path: Optional[str] = None) -> RunviewConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to RUNVIEW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("RUNVIEW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RunviewConfig(**data)
    else:
        config = RunviewConfig()

    env_api_url = os.getenv("RUNVIEW_API_URL")
    if env_api_url:
        config.api.base_url = env_api_url
    env_channel = os.getenv("RUNVIEW_CHANNEL")
    if env_channel:
        config.channel.backend = env_channel.lower()
    return config
