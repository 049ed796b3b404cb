"""Configuration service — loads, saves, and provides access to AppConfig."""
from __future__ import annotations

import json
import logging
import os

from pydantic import ValidationError

from tvsync.models.config import (
    MAX_HTTP_TIMEOUT,
    MIN_HTTP_TIMEOUT,
    MIN_SYNC_INTERVAL,
    AppConfig,
    Options,
)
from tvsync.models.source import SourceDescriptor

logger = logging.getLogger(__name__)


def default_data_dir() -> str:
    return os.environ.get("DATA_DIR", "/data" if os.path.exists("/data") else "./data")


class ConfigService:
    """Manages application configuration with file persistence.

    The config is kept in-memory after first load and re-read on explicit
    ``load()`` or ``reload()`` calls. Sources are stored as immutable
    descriptors: edits go through :meth:`replace_source`, which swaps the
    whole record.
    """

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.config_file = os.path.join(data_dir, "config.json")
        self._config = AppConfig()

    # ------------------------------------------------------------------
    # Load / Save
    # ------------------------------------------------------------------

    def load(self) -> AppConfig:
        """Load configuration from disk, applying defaults for missing keys.

        Sources that fail validation are dropped with an error log rather than
        preventing the rest of the config from loading.
        """
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file) as f:
                    raw = json.load(f)

                sources: list[SourceDescriptor] = []
                for item in raw.get("sources", []):
                    try:
                        sources.append(SourceDescriptor.model_validate(item))
                    except ValidationError as e:
                        logger.error(f"Skipping invalid source {item.get('id', '?')}: {e}")

                options = Options.model_validate(raw.get("options") or {})
                self._config = AppConfig(sources=sources, options=options)
                return self._config

            except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
                logger.error(f"Error loading config: {e}")

        self._config = AppConfig()
        return self._config

    def reload(self) -> AppConfig:
        """Alias for ``load()``."""
        return self.load()

    def save(self, config: AppConfig | None = None) -> None:
        """Persist the config to disk."""
        if config is not None:
            self._config = config
        os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self._config.model_dump(mode="json"), f, indent=2)

    @property
    def config(self) -> AppConfig:
        return self._config

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def get_sources(self) -> list[SourceDescriptor]:
        return list(self._config.sources)

    def get_enabled_sources(self) -> list[SourceDescriptor]:
        return [s for s in self._config.sources if s.enabled]

    def get_source_by_id(self, source_id: str) -> SourceDescriptor | None:
        for source in self._config.sources:
            if source.id == source_id:
                return source
        return None

    def add_source(self, source: SourceDescriptor) -> SourceDescriptor:
        if self.get_source_by_id(source.id) is not None:
            raise ValueError(f"Source {source.id} already exists")
        self._config.sources.append(source)
        self.save()
        return source

    def replace_source(self, source: SourceDescriptor) -> SourceDescriptor | None:
        for i, existing in enumerate(self._config.sources):
            if existing.id == source.id:
                self._config.sources[i] = source
                self.save()
                return source
        return None

    def remove_source(self, source_id: str) -> bool:
        before = len(self._config.sources)
        self._config.sources = [s for s in self._config.sources if s.id != source_id]
        if len(self._config.sources) < before:
            self.save()
            return True
        return False

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def get_http_timeout(self) -> float:
        timeout = self._config.options.http_timeout
        return min(max(timeout, MIN_HTTP_TIMEOUT), MAX_HTTP_TIMEOUT)

    http_timeout = property(get_http_timeout)

    def get_sync_interval(self) -> int:
        return max(self._config.options.sync_interval, MIN_SYNC_INTERVAL)

    sync_interval = property(get_sync_interval)

    def get_max_concurrent_syncs(self) -> int:
        return max(self._config.options.max_concurrent_syncs, 1)

    def get_epg_refresh_enabled(self) -> bool:
        return self._config.options.epg_refresh

    def get_fetch_episodes(self) -> bool:
        return self._config.options.xtream_fetch_episodes

    def get_user_agent(self) -> str:
        return self._config.options.user_agent
