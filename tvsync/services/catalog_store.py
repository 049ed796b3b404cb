"""Catalog store — SQLite persistence for catalogs, favorites, guide data and sync state."""
from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, Optional

from tvsync.database import DB_NAME, db_connect, init_db
from tvsync.errors import PersistenceFailure
from tvsync.models.catalog import Channel, EpgChannel, EpgProgram, Episode, Movie, Series
from tvsync.models.sync import CatalogSnapshot, Changeset, SyncResult

logger = logging.getLogger(__name__)

_CHANNEL_COLUMNS = (
    "id, name, stream_url, logo_url, group_title, epg_id, catchup_days, "
    "catchup_source, channel_number, sort_order, provider_id"
)
_MOVIE_COLUMNS = "id, name, stream_url, logo_url, group_title, sort_order, provider_id, container_extension, rating"
_SERIES_COLUMNS = (
    "id, name, group_title, logo_url, backdrop_url, plot, genre, rating, release_year, sort_order, provider_id"
)
_EPISODE_COLUMNS = (
    "series_id, season_number, episode_number, name, stream_url, ordinal, provider_id, "
    "container_extension, plot, duration_secs, logo_url"
)

_CATALOG_TABLES = ("episodes", "series", "movies", "channels")


def _ts(value: datetime) -> int:
    return int(value.timestamp())


def _from_ts(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _channel_from_row(source_id: str, row: sqlite3.Row, favorite: bool = False) -> Channel:
    return Channel(
        id=row["id"],
        source_id=source_id,
        name=row["name"],
        stream_url=row["stream_url"],
        logo_url=row["logo_url"],
        group_title=row["group_title"],
        epg_id=row["epg_id"],
        catchup_days=row["catchup_days"],
        catchup_source=row["catchup_source"],
        channel_number=row["channel_number"],
        order=row["sort_order"],
        provider_id=row["provider_id"],
        is_favorite=favorite,
    )


def _movie_from_row(source_id: str, row: sqlite3.Row, favorite: bool = False) -> Movie:
    return Movie(
        id=row["id"],
        source_id=source_id,
        name=row["name"],
        stream_url=row["stream_url"],
        logo_url=row["logo_url"],
        group_title=row["group_title"],
        order=row["sort_order"],
        provider_id=row["provider_id"],
        container_extension=row["container_extension"],
        rating=row["rating"],
        is_favorite=favorite,
    )


def _series_from_row(source_id: str, row: sqlite3.Row, episodes: list[Episode], favorite: bool = False) -> Series:
    return Series(
        id=row["id"],
        source_id=source_id,
        name=row["name"],
        group_title=row["group_title"],
        logo_url=row["logo_url"],
        backdrop_url=row["backdrop_url"],
        plot=row["plot"],
        genre=row["genre"],
        rating=row["rating"],
        release_year=row["release_year"],
        order=row["sort_order"],
        provider_id=row["provider_id"],
        episodes=episodes,
        is_favorite=favorite,
    )


def _episode_from_row(row: sqlite3.Row) -> Episode:
    return Episode(
        season_number=row["season_number"],
        episode_number=row["episode_number"],
        name=row["name"],
        stream_url=row["stream_url"],
        ordinal=row["ordinal"],
        provider_id=row["provider_id"],
        container_extension=row["container_extension"],
        plot=row["plot"],
        duration_secs=row["duration_secs"],
        logo_url=row["logo_url"],
    )


def _program_from_row(row: sqlite3.Row) -> EpgProgram:
    return EpgProgram(
        channel_id=row["channel_id"],
        title=row["title"],
        description=row["description"],
        start_time=_from_ts(row["start_time"]),
        end_time=_from_ts(row["end_time"]),
        category=row["category"],
        icon_url=row["icon_url"],
    )


class CatalogStore:
    """Per-source catalog persistence.

    Writes that replace a source's catalog or guide run inside a single
    ``BEGIN IMMEDIATE`` transaction: readers see either the old rows or the
    new ones, never a mix. Favorites are never written by those paths.
    """

    def __init__(self, data_dir: str, db_name: str = DB_NAME):
        os.makedirs(data_dir, exist_ok=True)
        self.db_path = os.path.join(data_dir, db_name)
        init_db(self.db_path)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def _favorite_ids(self, conn: sqlite3.Connection, source_id: str) -> set[str]:
        rows = conn.execute("SELECT entity_id FROM favorites WHERE source_id = ?", (source_id,)).fetchall()
        return {row["entity_id"] for row in rows}

    def _episodes_by_series(self, conn: sqlite3.Connection, source_id: str) -> dict[str, list[Episode]]:
        grouped: dict[str, list[Episode]] = {}
        rows = conn.execute(
            f"SELECT {_EPISODE_COLUMNS} FROM episodes WHERE source_id = ? "
            "ORDER BY series_id, season_number, episode_number",
            (source_id,),
        ).fetchall()
        for row in rows:
            grouped.setdefault(row["series_id"], []).append(_episode_from_row(row))
        return grouped

    def read_current_catalog(self, source_id: str) -> CatalogSnapshot:
        """The stored catalog of one source (series keyed by name, with episodes)."""
        conn = db_connect(self.db_path)
        try:
            favorites = self._favorite_ids(conn, source_id)
            channels = {
                row["id"]: _channel_from_row(source_id, row, row["id"] in favorites)
                for row in conn.execute(
                    f"SELECT {_CHANNEL_COLUMNS} FROM channels WHERE source_id = ? ORDER BY sort_order",
                    (source_id,),
                )
            }
            movies = {
                row["id"]: _movie_from_row(source_id, row, row["id"] in favorites)
                for row in conn.execute(
                    f"SELECT {_MOVIE_COLUMNS} FROM movies WHERE source_id = ? ORDER BY sort_order",
                    (source_id,),
                )
            }
            episodes = self._episodes_by_series(conn, source_id)
            series = {
                row["name"]: _series_from_row(source_id, row, episodes.get(row["id"], []), row["id"] in favorites)
                for row in conn.execute(
                    f"SELECT {_SERIES_COLUMNS} FROM series WHERE source_id = ? ORDER BY sort_order",
                    (source_id,),
                )
            }
            return CatalogSnapshot(channels=channels, movies=movies, series=series)
        except sqlite3.Error as e:
            logger.error(f"Failed to read catalog for source {source_id}: {e}")
            raise PersistenceFailure(f"Could not read stored catalog: {e}") from e
        finally:
            conn.close()

    def apply_changeset(self, changeset: Changeset) -> None:
        """Replace the source's catalog with the changeset's entities, atomically.

        On any database error the transaction is rolled back and
        :class:`PersistenceFailure` is raised; the previous catalog stays in place.
        """
        source_id = changeset.source_id
        conn = db_connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            for table in _CATALOG_TABLES:
                conn.execute(f"DELETE FROM {table} WHERE source_id = ?", (source_id,))

            conn.executemany(
                "INSERT INTO channels (source_id, " + _CHANNEL_COLUMNS + ") VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                [
                    (source_id, c.id, c.name, c.stream_url, c.logo_url, c.group_title, c.epg_id,
                     c.catchup_days, c.catchup_source, c.channel_number, c.order, c.provider_id)
                    for c in changeset.channels
                ],
            )
            conn.executemany(
                "INSERT INTO movies (source_id, " + _MOVIE_COLUMNS + ") VALUES (?,?,?,?,?,?,?,?,?,?)",
                [
                    (source_id, m.id, m.name, m.stream_url, m.logo_url, m.group_title, m.order,
                     m.provider_id, m.container_extension, m.rating)
                    for m in changeset.movies
                ],
            )
            conn.executemany(
                "INSERT INTO series (source_id, " + _SERIES_COLUMNS + ") VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                [
                    (source_id, s.id, s.name, s.group_title, s.logo_url, s.backdrop_url, s.plot,
                     s.genre, s.rating, s.release_year, s.order, s.provider_id)
                    for s in changeset.series
                ],
            )
            conn.executemany(
                "INSERT INTO episodes (source_id, " + _EPISODE_COLUMNS + ") VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                [
                    (source_id, s.id, e.season_number, e.episode_number, e.name, e.stream_url, e.ordinal,
                     e.provider_id, e.container_extension, e.plot, e.duration_secs, e.logo_url)
                    for s in changeset.series
                    for e in s.episodes
                ],
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Failed to persist catalog for source {source_id}: {e}")
            raise PersistenceFailure(f"Could not persist catalog: {e}") from e
        finally:
            conn.close()

        logger.info(
            f"Persisted catalog for source {source_id}: {len(changeset.channels)} channels, "
            f"{len(changeset.movies)} movies, {len(changeset.series)} series"
        )

    def delete_all_for_source(self, source_id: str) -> None:
        """Remove every row owned by a source, favorites and guide data included."""
        conn = db_connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            for table in (*_CATALOG_TABLES, "favorites", "epg_programs", "epg_channels", "source_state"):
                conn.execute(f"DELETE FROM {table} WHERE source_id = ?", (source_id,))
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PersistenceFailure(f"Could not delete source data: {e}") from e
        finally:
            conn.close()
        logger.info(f"Deleted all stored data for source {source_id}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_channels(
        self,
        source_id: str,
        group: Optional[str] = None,
        search: Optional[str] = None,
        favorites_only: bool = False,
    ) -> list[Channel]:
        sql = (
            f"SELECT {', '.join('c.' + col.strip() for col in _CHANNEL_COLUMNS.split(','))}, "
            "f.entity_id IS NOT NULL AS favorite "
            "FROM channels c LEFT JOIN favorites f ON f.source_id = c.source_id AND f.entity_id = c.id "
            "WHERE c.source_id = ?"
        )
        params: list = [source_id]
        if group:
            sql += " AND c.group_title = ?"
            params.append(group)
        if search:
            sql += " AND lower(c.name) LIKE ?"
            params.append(f"%{search.lower()}%")
        if favorites_only:
            sql += " AND f.entity_id IS NOT NULL"
        sql += " ORDER BY c.sort_order"

        conn = db_connect(self.db_path)
        try:
            return [_channel_from_row(source_id, row, bool(row["favorite"])) for row in conn.execute(sql, params)]
        finally:
            conn.close()

    def list_movies(self, source_id: str, group: Optional[str] = None, search: Optional[str] = None) -> list[Movie]:
        sql = f"SELECT {_MOVIE_COLUMNS} FROM movies WHERE source_id = ?"
        params: list = [source_id]
        if group:
            sql += " AND group_title = ?"
            params.append(group)
        if search:
            sql += " AND lower(name) LIKE ?"
            params.append(f"%{search.lower()}%")
        sql += " ORDER BY sort_order"

        conn = db_connect(self.db_path)
        try:
            favorites = self._favorite_ids(conn, source_id)
            return [_movie_from_row(source_id, row, row["id"] in favorites) for row in conn.execute(sql, params)]
        finally:
            conn.close()

    def list_series(self, source_id: str, group: Optional[str] = None) -> list[Series]:
        """Series headers without their episodes."""
        sql = f"SELECT {_SERIES_COLUMNS} FROM series WHERE source_id = ?"
        params: list = [source_id]
        if group:
            sql += " AND group_title = ?"
            params.append(group)
        sql += " ORDER BY sort_order"

        conn = db_connect(self.db_path)
        try:
            favorites = self._favorite_ids(conn, source_id)
            return [_series_from_row(source_id, row, [], row["id"] in favorites) for row in conn.execute(sql, params)]
        finally:
            conn.close()

    def get_series(self, source_id: str, series_id: str) -> Optional[Series]:
        conn = db_connect(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_SERIES_COLUMNS} FROM series WHERE source_id = ? AND id = ?",
                (source_id, series_id),
            ).fetchone()
            if row is None:
                return None
            episodes = [
                _episode_from_row(ep)
                for ep in conn.execute(
                    f"SELECT {_EPISODE_COLUMNS} FROM episodes WHERE source_id = ? AND series_id = ? "
                    "ORDER BY season_number, episode_number",
                    (source_id, series_id),
                )
            ]
            return _series_from_row(source_id, row, episodes, series_id in self._favorite_ids(conn, source_id))
        finally:
            conn.close()

    def entity_exists(self, source_id: str, entity_id: str) -> bool:
        conn = db_connect(self.db_path)
        try:
            for table in ("channels", "movies", "series"):
                row = conn.execute(
                    f"SELECT 1 FROM {table} WHERE source_id = ? AND id = ?", (source_id, entity_id)
                ).fetchone()
                if row is not None:
                    return True
            return False
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def set_favorite(self, source_id: str, entity_id: str, favorite: bool = True) -> None:
        conn = db_connect(self.db_path)
        try:
            if favorite:
                conn.execute(
                    "INSERT OR IGNORE INTO favorites (source_id, entity_id, created_at) VALUES (?,?,?)",
                    (source_id, entity_id, datetime.now(timezone.utc).isoformat()),
                )
            else:
                conn.execute("DELETE FROM favorites WHERE source_id = ? AND entity_id = ?", (source_id, entity_id))
        finally:
            conn.close()

    def is_favorite(self, source_id: str, entity_id: str) -> bool:
        conn = db_connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM favorites WHERE source_id = ? AND entity_id = ?", (source_id, entity_id)
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # EPG
    # ------------------------------------------------------------------

    def replace_epg(self, source_id: str, channels: Iterable[EpgChannel], programs: Iterable[EpgProgram]) -> None:
        conn = db_connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("DELETE FROM epg_programs WHERE source_id = ?", (source_id,))
            conn.execute("DELETE FROM epg_channels WHERE source_id = ?", (source_id,))
            conn.executemany(
                "INSERT OR REPLACE INTO epg_channels (source_id, id, display_name, icon_url) VALUES (?,?,?,?)",
                [(source_id, c.id, c.display_name, c.icon_url) for c in channels],
            )
            conn.executemany(
                "INSERT INTO epg_programs "
                "(source_id, channel_id, title, description, start_time, end_time, category, icon_url) "
                "VALUES (?,?,?,?,?,?,?,?)",
                [
                    (source_id, p.channel_id, p.title, p.description, _ts(p.start_time), _ts(p.end_time),
                     p.category, p.icon_url)
                    for p in programs
                ],
            )
            conn.execute(
                "INSERT INTO source_state (source_id, epg_refreshed) VALUES (?, ?) "
                "ON CONFLICT(source_id) DO UPDATE SET epg_refreshed = excluded.epg_refreshed",
                (source_id, datetime.now(timezone.utc).isoformat()),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Failed to persist EPG for source {source_id}: {e}")
            raise PersistenceFailure(f"Could not persist EPG: {e}") from e
        finally:
            conn.close()

    def list_programs(
        self,
        channel_id: str,
        source_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[EpgProgram]:
        """Programmes for a provider EPG channel id, optionally limited to those overlapping ``[start, end)``."""
        sql = "SELECT * FROM epg_programs WHERE channel_id = ?"
        params: list = [channel_id]
        if source_id:
            sql += " AND source_id = ?"
            params.append(source_id)
        if end is not None:
            sql += " AND start_time < ?"
            params.append(_ts(end))
        if start is not None:
            sql += " AND end_time > ?"
            params.append(_ts(start))
        sql += " ORDER BY start_time"

        conn = db_connect(self.db_path)
        try:
            return [_program_from_row(row) for row in conn.execute(sql, params)]
        finally:
            conn.close()

    def list_epg_channels(self, source_id: str) -> list[EpgChannel]:
        conn = db_connect(self.db_path)
        try:
            return [
                EpgChannel(id=row["id"], display_name=row["display_name"], icon_url=row["icon_url"])
                for row in conn.execute(
                    "SELECT id, display_name, icon_url FROM epg_channels WHERE source_id = ? ORDER BY id",
                    (source_id,),
                )
            ]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    def record_sync_result(self, result: SyncResult) -> None:
        finished = (result.finished_at or datetime.now(timezone.utc)).isoformat()
        conn = db_connect(self.db_path)
        try:
            conn.execute(
                "INSERT INTO source_state "
                "(source_id, last_sync, last_status, last_error, error_kind, warning_count, summary) "
                "VALUES (?,?,?,?,?,?,?) "
                "ON CONFLICT(source_id) DO UPDATE SET "
                "last_sync = excluded.last_sync, last_status = excluded.last_status, "
                "last_error = excluded.last_error, error_kind = excluded.error_kind, "
                "warning_count = excluded.warning_count, summary = excluded.summary",
                (
                    result.source_id,
                    finished,
                    result.status.value if result.status else None,
                    result.error,
                    result.error_kind,
                    result.warning_count,
                    result.summary(),
                ),
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to record sync result for source {result.source_id}: {e}")
        finally:
            conn.close()

    def get_sync_state(self, source_id: str) -> Optional[dict]:
        conn = db_connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM source_state WHERE source_id = ?", (source_id,)).fetchone()
            return dict(row) if row is not None else None
        finally:
            conn.close()
