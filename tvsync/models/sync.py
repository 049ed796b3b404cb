"""Pydantic models for sync runs: catalog snapshots, changesets and results."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from tvsync.models.catalog import Channel, EntryWarning, Movie, Series


class SyncState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class EntityDiff(BaseModel):
    """Stable ids added/changed/removed for one entity type."""

    added: list[str] = Field(default_factory=list)
    changed: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


class EntityCounts(BaseModel):
    added: int = 0
    changed: int = 0
    removed: int = 0

    @classmethod
    def from_diff(cls, diff: EntityDiff) -> "EntityCounts":
        return cls(added=len(diff.added), changed=len(diff.changed), removed=len(diff.removed))


class CatalogSnapshot(BaseModel):
    """A source's catalog keyed by stable id (series keyed by name)."""

    channels: dict[str, Channel] = Field(default_factory=dict)
    movies: dict[str, Movie] = Field(default_factory=dict)
    series: dict[str, Series] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.channels or self.movies or self.series)

    @property
    def item_count(self) -> int:
        return len(self.channels) + len(self.movies) + len(self.series)


class Changeset(BaseModel):
    """The full replacement catalog for one source plus what differs from the stored one."""

    source_id: str
    channels: list[Channel] = Field(default_factory=list)
    movies: list[Movie] = Field(default_factory=list)
    series: list[Series] = Field(default_factory=list)
    channel_diff: EntityDiff = Field(default_factory=EntityDiff)
    movie_diff: EntityDiff = Field(default_factory=EntityDiff)
    series_diff: EntityDiff = Field(default_factory=EntityDiff)

    @property
    def has_changes(self) -> bool:
        return not (self.channel_diff.is_empty and self.movie_diff.is_empty and self.series_diff.is_empty)


class SyncResult(BaseModel):
    source_id: str
    state: SyncState = SyncState.IDLE
    status: Optional[SyncStatus] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    channels: EntityCounts = Field(default_factory=EntityCounts)
    movies: EntityCounts = Field(default_factory=EntityCounts)
    series: EntityCounts = Field(default_factory=EntityCounts)
    warnings: list[EntryWarning] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def summary(self) -> str:
        if self.status == SyncStatus.FAILURE:
            text = f"Sync failed: {self.error}"
            if self.warnings:
                text += f" ({self.warning_count} warning(s))"
            return text
        return (
            f"Channels +{self.channels.added} ~{self.channels.changed} -{self.channels.removed}, "
            f"movies +{self.movies.added} ~{self.movies.changed} -{self.movies.removed}, "
            f"series +{self.series.added} ~{self.series.changed} -{self.series.removed}"
            f" | {self.warning_count} warning(s)"
        )


class EpgRefreshResult(BaseModel):
    source_id: str
    status: SyncStatus
    channels: int = 0
    programs: int = 0
    warnings: list[EntryWarning] = Field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None
