"""SQLite database — schema and connection helpers.

Usage
-----
    conn = db_connect(db_path)
    try:
        conn.execute(...)
        conn.commit()
    finally:
        conn.close()

Catalog rows belong to exactly one source. User-owned state (favorites)
lives in its own table keyed by ``(source_id, entity_id)`` so a sync, which
replaces catalog rows wholesale, never touches it.
"""
from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

DB_NAME = "tvsync.db"


def db_connect(db_path: str) -> sqlite3.Connection:
    """Return a synchronous :class:`sqlite3.Connection` tuned for performance.

    *Always* called inside a ``try/finally`` block by callers. The connection
    is in autocommit mode; multi-statement writes open their own
    ``BEGIN IMMEDIATE`` transaction.
    """
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA cache_size=-32768")   # 32 MB page cache
    return conn


# ---------------------------------------------------------------------------
# Schema – CREATE TABLE IF NOT EXISTS
# ---------------------------------------------------------------------------

_SCHEMA = """
-- ── Catalog ───────────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS channels (
    source_id      TEXT NOT NULL,
    id             TEXT NOT NULL,
    name           TEXT NOT NULL DEFAULT '',
    stream_url     TEXT NOT NULL,
    logo_url       TEXT,
    group_title    TEXT NOT NULL,
    epg_id         TEXT,
    catchup_days   INTEGER NOT NULL DEFAULT 0,
    catchup_source TEXT,
    channel_number INTEGER,
    sort_order     INTEGER NOT NULL DEFAULT 0,
    provider_id    TEXT,
    PRIMARY KEY (source_id, id)
);

CREATE INDEX IF NOT EXISTS idx_channels_source_order
    ON channels (source_id, sort_order);
CREATE INDEX IF NOT EXISTS idx_channels_epg
    ON channels (epg_id);

CREATE TABLE IF NOT EXISTS movies (
    source_id           TEXT NOT NULL,
    id                  TEXT NOT NULL,
    name                TEXT NOT NULL DEFAULT '',
    stream_url          TEXT NOT NULL,
    logo_url            TEXT,
    group_title         TEXT NOT NULL,
    sort_order          INTEGER NOT NULL DEFAULT 0,
    provider_id         TEXT,
    container_extension TEXT,
    rating              REAL,
    PRIMARY KEY (source_id, id)
);

CREATE INDEX IF NOT EXISTS idx_movies_source_order
    ON movies (source_id, sort_order);

CREATE TABLE IF NOT EXISTS series (
    source_id    TEXT NOT NULL,
    id           TEXT NOT NULL,
    name         TEXT NOT NULL,
    group_title  TEXT NOT NULL,
    logo_url     TEXT,
    backdrop_url TEXT,
    plot         TEXT,
    genre        TEXT,
    rating       REAL,
    release_year INTEGER,
    sort_order   INTEGER NOT NULL DEFAULT 0,
    provider_id  TEXT,
    PRIMARY KEY (source_id, id),
    UNIQUE (source_id, name)
);

CREATE TABLE IF NOT EXISTS episodes (
    source_id           TEXT NOT NULL,
    series_id           TEXT NOT NULL,
    season_number       INTEGER NOT NULL CHECK (season_number >= 1),
    episode_number      INTEGER NOT NULL CHECK (episode_number >= 1),
    name                TEXT NOT NULL DEFAULT '',
    stream_url          TEXT NOT NULL,
    ordinal             INTEGER NOT NULL DEFAULT 0,
    provider_id         TEXT,
    container_extension TEXT,
    plot                TEXT,
    duration_secs       INTEGER,
    logo_url            TEXT,
    PRIMARY KEY (source_id, series_id, season_number, episode_number),
    FOREIGN KEY (source_id, series_id)
        REFERENCES series (source_id, id) ON DELETE CASCADE
);

-- ── User state ────────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS favorites (
    source_id  TEXT NOT NULL,
    entity_id  TEXT NOT NULL,
    created_at TEXT,
    PRIMARY KEY (source_id, entity_id)
);

-- ── EPG ───────────────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS epg_channels (
    source_id    TEXT NOT NULL,
    id           TEXT NOT NULL,
    display_name TEXT NOT NULL,
    icon_url     TEXT,
    PRIMARY KEY (source_id, id)
);

CREATE TABLE IF NOT EXISTS epg_programs (
    source_id   TEXT NOT NULL,
    channel_id  TEXT NOT NULL,
    title       TEXT NOT NULL,
    description TEXT,
    start_time  INTEGER NOT NULL,
    end_time    INTEGER NOT NULL CHECK (end_time > start_time),
    category    TEXT,
    icon_url    TEXT
);

CREATE INDEX IF NOT EXISTS idx_epg_programs_channel
    ON epg_programs (channel_id, start_time);
CREATE INDEX IF NOT EXISTS idx_epg_programs_source
    ON epg_programs (source_id);

-- ── Sync bookkeeping ──────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS source_state (
    source_id     TEXT PRIMARY KEY,
    last_sync     TEXT,
    last_status   TEXT,
    last_error    TEXT,
    error_kind    TEXT,
    warning_count INTEGER NOT NULL DEFAULT 0,
    summary       TEXT,
    epg_refreshed TEXT
);
"""


def init_db(db_path: str) -> None:
    """Create all tables and indexes. Safe to call on every startup (idempotent)."""
    conn = db_connect(db_path)
    try:
        conn.executescript(_SCHEMA)
        logger.info(f"Database initialised at {db_path}")
    finally:
        conn.close()
