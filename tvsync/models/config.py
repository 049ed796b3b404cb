"""Pydantic models for application configuration."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from tvsync.models.source import SourceDescriptor

MIN_HTTP_TIMEOUT = 30.0
MAX_HTTP_TIMEOUT = 120.0
MIN_SYNC_INTERVAL = 300


class Options(BaseModel):
    """Application options."""
    model_config = ConfigDict(extra="allow")

    http_timeout: float = 60.0
    max_concurrent_syncs: int = 2
    sync_interval: int = 21600  # 6 hours
    epg_refresh: bool = True
    xtream_fetch_episodes: bool = False
    user_agent: str = "tvsync/0.1"


class AppConfig(BaseModel):
    """Root application configuration."""
    model_config = ConfigDict(extra="allow")

    sources: list[SourceDescriptor] = Field(default_factory=list)
    options: Options = Field(default_factory=Options)
