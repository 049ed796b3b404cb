"""Sync service — per-source catalog sync state machine and multi-source scheduler.

A run moves through ``idle -> fetching -> parsing -> diffing -> persisting``
and ends ``completed`` or ``failed``. Cancellation is checked between
stages; a cancelled or failed run never reaches the store, so the source's
previous catalog stays visible.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Optional

from tvsync.errors import SyncCancelled, SyncInProgress, TransportError, TvSyncError
from tvsync.models.catalog import Channel, EntryWarning, Episode, Movie, RawEntry, Series
from tvsync.models.source import SourceDescriptor, SourceKind
from tvsync.models.sync import (
    CatalogSnapshot,
    Changeset,
    EntityCounts,
    EntityDiff,
    SyncResult,
    SyncState,
    SyncStatus,
)
from tvsync.models.xtream import StreamKind
from tvsync.services.m3u_service import parse_m3u
from tvsync.services.xtream_service import (
    XtreamCodesClient,
    build_category_map,
    series_id_for,
    stable_id,
)

if TYPE_CHECKING:
    from tvsync.services.catalog_store import CatalogStore
    from tvsync.services.config_service import ConfigService
    from tvsync.services.credential_service import CredentialService
    from tvsync.services.epg_service import EpgService
    from tvsync.services.http_client import HttpClientService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Entity construction
# ---------------------------------------------------------------------------

def channel_id_for(source_id: str, entry: RawEntry) -> str:
    """Stable channel id: the provider id when there is one, else source + stream URL."""
    if entry.provider_id:
        return f"xc-{source_id}-{entry.provider_id}"
    return f"m3u-{stable_id(source_id, entry.stream_url)}"


def movie_id_for(source_id: str, entry: RawEntry) -> str:
    if entry.provider_id:
        return f"xv-{source_id}-{entry.provider_id}"
    return f"mov-{stable_id(source_id, entry.stream_url)}"


def build_channels(source_id: str, entries: Iterable[RawEntry]) -> list[Channel]:
    return [
        Channel(
            id=channel_id_for(source_id, e),
            source_id=source_id,
            name=e.display_name,
            stream_url=e.stream_url,
            logo_url=e.logo_url,
            group_title=e.group_title,
            epg_id=e.epg_id,
            catchup_days=e.catchup_days,
            catchup_source=e.catchup_source,
            channel_number=e.channel_number,
            order=e.ordinal,
            provider_id=e.provider_id,
        )
        for e in entries
    ]


def build_movies(source_id: str, entries: Iterable[RawEntry]) -> list[Movie]:
    return [
        Movie(
            id=movie_id_for(source_id, e),
            source_id=source_id,
            name=e.display_name,
            stream_url=e.stream_url,
            logo_url=e.logo_url,
            group_title=e.group_title,
            order=e.ordinal,
            provider_id=e.provider_id,
            container_extension=e.container_extension,
        )
        for e in entries
    ]


def build_series(source_id: str, grouped: dict[str, list[RawEntry]]) -> list[Series]:
    """Series from grouped M3U episodes; header fields come from the first episode."""
    series: list[Series] = []
    for order, (name, entries) in enumerate(grouped.items()):
        first = min(entries, key=lambda e: e.ordinal)
        series.append(Series(
            id=series_id_for(source_id, name),
            source_id=source_id,
            name=name,
            group_title=first.group_title,
            logo_url=first.logo_url,
            order=order,
            episodes=[
                Episode(
                    season_number=e.season_number,
                    episode_number=e.episode_number,
                    name=e.display_name,
                    stream_url=e.stream_url,
                    ordinal=e.ordinal,
                )
                for e in entries
            ],
        ))
    return series


# ---------------------------------------------------------------------------
# Diffing
# ---------------------------------------------------------------------------

def _series_fields(series: Series) -> dict:
    fields = series.catalog_fields()
    fields["episodes"] = [ep.model_dump() for ep in sorted(series.episodes, key=lambda ep: ep.key)]
    return fields


def diff_entities(old: dict, new: dict, fields) -> EntityDiff:
    """Added/changed/removed keys between two keyed entity maps.

    *fields* extracts the comparable (catalog-owned) fields of an entity.
    """
    added = [key for key in new if key not in old]
    removed = [key for key in old if key not in new]
    changed = [key for key in new if key in old and fields(old[key]) != fields(new[key])]
    return EntityDiff(added=added, changed=changed, removed=removed)


def build_changeset(
    source_id: str,
    current: CatalogSnapshot,
    channels: list[Channel],
    movies: list[Movie],
    series: list[Series],
) -> Changeset:
    """Full replacement catalog plus its differences from *current*.

    Channels and movies are keyed by stable id, series by name.
    ``is_favorite`` never takes part in the comparison.
    """
    new_channels = {c.id: c for c in channels}
    new_movies = {m.id: m for m in movies}
    new_series = {s.name: s for s in series}
    return Changeset(
        source_id=source_id,
        channels=list(new_channels.values()),
        movies=list(new_movies.values()),
        series=list(new_series.values()),
        channel_diff=diff_entities(current.channels, new_channels, Channel.catalog_fields),
        movie_diff=diff_entities(current.movies, new_movies, Movie.catalog_fields),
        series_diff=diff_entities(current.series, new_series, _series_fields),
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SyncService:
    """Runs catalog syncs.

    Syncs of the same source are serialised by a per-source lock; syncs of
    different sources run independently, bounded by ``max_concurrent_syncs``
    in :meth:`sync_all`.
    """

    def __init__(
        self,
        config_service: "ConfigService",
        http_client: "HttpClientService",
        store: "CatalogStore",
        credentials: "CredentialService",
        epg_service: Optional["EpgService"] = None,
    ):
        self.config_service = config_service
        self.http_client = http_client
        self.store = store
        self.credentials = credentials
        self.epg_service = epg_service
        self._locks: dict[str, asyncio.Lock] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._states: dict[str, SyncState] = {}
        self._last_results: dict[str, SyncResult] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _lock_for(self, source_id: str) -> asyncio.Lock:
        return self._locks.setdefault(source_id, asyncio.Lock())

    def is_running(self, source_id: str) -> bool:
        lock = self._locks.get(source_id)
        return lock is not None and lock.locked()

    def get_state(self, source_id: str) -> SyncState:
        return self._states.get(source_id, SyncState.IDLE)

    def get_last_result(self, source_id: str) -> Optional[SyncResult]:
        return self._last_results.get(source_id)

    def _enter(self, source: SourceDescriptor, result: SyncResult, state: SyncState, cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            raise SyncCancelled(f"Sync cancelled before {state.value}")
        result.state = state
        self._states[source.id] = state
        logger.info(f"[{source.display_name}] {state.value}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync(
        self,
        source: SourceDescriptor,
        *,
        wait: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Sync one source and return its result.

        When another sync of the same source is running, wait for it
        (``wait=True``) or raise :class:`SyncInProgress`.
        """
        lock = self._lock_for(source.id)
        if not wait and lock.locked():
            raise SyncInProgress(f"A sync of '{source.display_name}' is already running")

        async with lock:
            event = cancel_event or asyncio.Event()
            self._cancel_events[source.id] = event
            try:
                result = await self._run(source, event)
            finally:
                self._cancel_events.pop(source.id, None)
                self._states[source.id] = SyncState.IDLE
            self._last_results[source.id] = result
            self.store.record_sync_result(result)
        return result

    def cancel(self, source_id: str) -> bool:
        """Request cancellation of the running sync; False when none is running."""
        event = self._cancel_events.get(source_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for source {source_id}")
        return True

    async def sync_all(self, sources: Optional[list[SourceDescriptor]] = None) -> list[SyncResult]:
        if sources is None:
            sources = self.config_service.get_enabled_sources()
        if not sources:
            logger.info("No enabled sources to sync")
            return []

        semaphore = asyncio.Semaphore(self.config_service.get_max_concurrent_syncs())

        async def _one(source: SourceDescriptor) -> SyncResult:
            async with semaphore:
                try:
                    result = await self.sync(source)
                except Exception as e:
                    logger.exception(f"[{source.display_name}] sync aborted: {e}")
                    return SyncResult(
                        source_id=source.id,
                        state=SyncState.FAILED,
                        status=SyncStatus.FAILURE,
                        error_kind="InternalError",
                        error=str(e) or type(e).__name__,
                        started_at=datetime.now(timezone.utc),
                        finished_at=datetime.now(timezone.utc),
                    )
                if result.succeeded and self.epg_service and self.config_service.get_epg_refresh_enabled():
                    try:
                        epg = await self.epg_service.refresh(source)
                    except Exception as e:
                        logger.exception(f"[{source.display_name}] EPG refresh aborted: {e}")
                        epg = None
                    if epg is None or epg.status == SyncStatus.FAILURE:
                        result.warnings.append(EntryWarning(
                            kind="epg_refresh",
                            message=f"EPG refresh failed: {epg.error if epg else 'unexpected error'}",
                        ))
                return result

        logger.info(f"Starting sync of {len(sources)} source(s)")
        results = await asyncio.gather(*(_one(s) for s in sources))
        ok = sum(1 for r in results if r.succeeded)
        logger.info(f"Sync finished: {ok}/{len(results)} source(s) succeeded")
        return list(results)

    async def background_sync_loop(self, initial_delay: float = 10) -> None:
        """Periodically sync every enabled source."""
        logger.info("Background sync task started")
        await asyncio.sleep(initial_delay)

        while True:
            try:
                await self.sync_all()
                interval = self.config_service.get_sync_interval()
                logger.debug(f"Next sync in {interval} seconds")
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                logger.info("Background sync task cancelled")
                break
            except Exception as e:
                logger.error(f"Background sync error: {e}")
                await asyncio.sleep(60)

    def delete_source(self, source_id: str) -> None:
        self.cancel(source_id)
        self.store.delete_all_for_source(source_id)
        self._states.pop(source_id, None)
        self._last_results.pop(source_id, None)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(self, source: SourceDescriptor, cancel_event: asyncio.Event) -> SyncResult:
        result = SyncResult(source_id=source.id, started_at=datetime.now(timezone.utc))
        warnings: list[EntryWarning] = []
        try:
            self._enter(source, result, SyncState.FETCHING, cancel_event)
            if source.kind == SourceKind.XTREAM:
                channels, movies, series = await self._collect_xtream(source, result, warnings, cancel_event)
            else:
                channels, movies, series = await self._collect_m3u(source, result, warnings, cancel_event)

            self._enter(source, result, SyncState.DIFFING, cancel_event)
            current = self.store.read_current_catalog(source.id)
            if not (channels or movies or series) and not current.is_empty:
                warnings.append(EntryWarning(
                    kind="empty_catalog",
                    message=f"Source returned no entries; {current.item_count} item(s) were stored before",
                ))
            changeset = build_changeset(source.id, current, channels, movies, series)

            self._enter(source, result, SyncState.PERSISTING, cancel_event)
            if changeset.has_changes:
                self.store.apply_changeset(changeset)
            else:
                logger.info(f"[{source.display_name}] catalog unchanged")

            result.channels = EntityCounts.from_diff(changeset.channel_diff)
            result.movies = EntityCounts.from_diff(changeset.movie_diff)
            result.series = EntityCounts.from_diff(changeset.series_diff)
            result.state = SyncState.COMPLETED
            result.status = SyncStatus.SUCCESS
        except TvSyncError as e:
            result.state = SyncState.FAILED
            result.status = SyncStatus.FAILURE
            result.error_kind = e.error_kind
            result.error = str(e)
            logger.error(f"[{source.display_name}] sync failed ({e.error_kind}): {e}")
        except Exception as e:
            result.state = SyncState.FAILED
            result.status = SyncStatus.FAILURE
            result.error_kind = "InternalError"
            result.error = str(e) or type(e).__name__
            logger.exception(f"[{source.display_name}] sync failed unexpectedly: {e}")

        result.warnings = warnings
        result.finished_at = datetime.now(timezone.utc)
        if result.succeeded:
            logger.info(f"[{source.display_name}] {result.summary()}")
        return result

    async def _collect_m3u(
        self,
        source: SourceDescriptor,
        result: SyncResult,
        warnings: list[EntryWarning],
        cancel_event: asyncio.Event,
    ) -> tuple[list[Channel], list[Movie], list[Series]]:
        response = await self.http_client.get(
            source.url,
            headers={"User-Agent": self.config_service.get_user_agent()},
            timeout=self.config_service.get_http_timeout(),
        )
        if not response.ok:
            raise TransportError(
                f"Playlist fetch failed with HTTP {response.status}", status_code=response.status, url=source.url
            )
        logger.info(f"[{source.display_name}] fetched playlist ({len(response.content)} bytes)")

        self._enter(source, result, SyncState.PARSING, cancel_event)
        parsed = parse_m3u(response.text())
        warnings.extend(parsed.warnings)
        return (
            build_channels(source.id, parsed.channels),
            build_movies(source.id, parsed.movies),
            build_series(source.id, parsed.series),
        )

    async def _collect_xtream(
        self,
        source: SourceDescriptor,
        result: SyncResult,
        warnings: list[EntryWarning],
        cancel_event: asyncio.Event,
    ) -> tuple[list[Channel], list[Movie], list[Series]]:
        client = XtreamCodesClient(
            source.url,
            source.username,
            self.credentials.decrypt(source.password),
            self.http_client,
            timeout=self.config_service.get_http_timeout(),
        )
        await client.authenticate()

        # Categories first: the stream lists resolve group titles against them.
        raw: dict[StreamKind, list] = {}
        for kind, fetch in (
            (StreamKind.LIVE, client.list_live_streams),
            (StreamKind.VOD, client.list_vod_streams),
        ):
            if cancel_event.is_set():
                raise SyncCancelled("Sync cancelled while fetching")
            category_map = build_category_map(await client.list_categories(kind))
            raw[kind] = await fetch(category_map=category_map, warnings=warnings)

        if cancel_event.is_set():
            raise SyncCancelled("Sync cancelled while fetching")
        series_categories = build_category_map(await client.list_categories(StreamKind.SERIES))
        headers = await client.list_series(source.id, category_map=series_categories, warnings=warnings)

        if self.config_service.get_fetch_episodes():
            headers = await self._with_episodes(client, source, headers, warnings, cancel_event)

        self._enter(source, result, SyncState.PARSING, cancel_event)
        series: list[Series] = []
        seen: set[str] = set()
        for header in headers:
            if header.name in seen:
                warnings.append(EntryWarning(
                    kind="invalid_entry",
                    message=f"Duplicate series name '{header.name}'; later entry skipped",
                    ref=header.provider_id,
                ))
                continue
            seen.add(header.name)
            series.append(header.model_copy(update={"order": len(series)}))

        return (
            build_channels(source.id, raw[StreamKind.LIVE]),
            build_movies(source.id, raw[StreamKind.VOD]),
            series,
        )

    async def _with_episodes(
        self,
        client: XtreamCodesClient,
        source: SourceDescriptor,
        headers: list[Series],
        warnings: list[EntryWarning],
        cancel_event: asyncio.Event,
    ) -> list[Series]:
        filled: list[Series] = []
        for header in headers:
            if cancel_event.is_set():
                raise SyncCancelled("Sync cancelled while fetching episodes")
            try:
                detail = await client.get_series_detail(header.provider_id, source.id)
            except TvSyncError as e:
                warnings.append(EntryWarning(
                    kind="invalid_entry",
                    message=f"Episodes of '{header.name}' unavailable: {e}",
                    ref=header.provider_id,
                ))
                filled.append(header)
                continue
            filled.append(header.model_copy(update={"episodes": detail.episodes}))
        return filled
