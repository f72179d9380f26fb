"""SQLite database management for the readiness signal bank.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- Raw signal samples. Values stay unencrypted for windowed queries;
-- a later sample for the same (metric, timestamp, source) supersedes the earlier one.
CREATE TABLE IF NOT EXISTS signal_samples (
    id            TEXT PRIMARY KEY,
    metric        TEXT NOT NULL,
    value         REAL NOT NULL,
    unit          TEXT NOT NULL DEFAULT '',
    day           TEXT NOT NULL,
    timestamp     TEXT NOT NULL,
    end_timestamp TEXT,
    source        TEXT NOT NULL,
    created_at    TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (metric, timestamp, source)
);

-- Workout heart-rate / power streams (encrypted JSON blob)
CREATE TABLE IF NOT EXISTS workouts (
    id               TEXT PRIMARY KEY,
    day              TEXT NOT NULL,
    start            TEXT NOT NULL,
    duration_seconds REAL NOT NULL,
    source           TEXT NOT NULL,
    stream_enc       TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (start, source)
);

-- Every calculated score; later rows for the same day supersede earlier ones
CREATE TABLE IF NOT EXISTS score_results (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    kind        TEXT NOT NULL,
    day         TEXT NOT NULL,
    value       INTEGER NOT NULL,
    band        TEXT NOT NULL,
    status      TEXT NOT NULL,
    computed_at TEXT NOT NULL,
    payload_enc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS baselines (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    metric            TEXT NOT NULL,
    window_days       INTEGER NOT NULL,
    as_of             TEXT NOT NULL,
    mean              REAL NOT NULL,
    std_dev           REAL NOT NULL,
    sample_count      INTEGER NOT NULL,
    insufficient_data INTEGER NOT NULL DEFAULT 0,
    computed_at       TEXT NOT NULL,
    UNIQUE (user_id, metric, window_days, as_of)
);

-- Connector state tracking
CREATE TABLE IF NOT EXISTS data_sources (
    id           TEXT PRIMARY KEY,
    source_type  TEXT NOT NULL UNIQUE,
    display_name TEXT NOT NULL,
    connected_at TEXT,
    last_sync    TEXT,
    is_active    INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Indexes for common query patterns
CREATE INDEX IF NOT EXISTS idx_samples_metric_day ON signal_samples(metric, day);
CREATE INDEX IF NOT EXISTS idx_workouts_day       ON workouts(day);
CREATE INDEX IF NOT EXISTS idx_scores_user_kind   ON score_results(user_id, kind, day);
CREATE INDEX IF NOT EXISTS idx_baselines_metric   ON baselines(user_id, metric, as_of);
"""

# ---------------------------------------------------------------------------
# V2: durable cache tier and anomaly dismissals
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_key   TEXT PRIMARY KEY,
    kind        TEXT NOT NULL,
    day         TEXT NOT NULL,
    payload_enc TEXT NOT NULL,
    stored_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS anomaly_dismissals (
    event_id        TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    dismissed_until TEXT NOT NULL,
    dismissed_at    TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (event_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_cache_kind ON cache_entries(kind);
"""


# version -> (DDL, summary) applied on top of V1
_MIGRATIONS: dict[int, tuple[str, str]] = {
    2: (_SCHEMA_V2, "durable cache and anomaly dismissals"),
}


class DatabaseError(Exception):
    """Raised when database operations fail."""


class SignalDatabase:
    """Owns the SQLite connection of the signal bank.

    ``":memory:"`` gives a private throwaway database (tests, or a server
    started without an encryption key). Can be used as a context manager::

        with SignalDatabase("~/.readiness/signals.db") as db:
            db.connection.execute(...)
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection.

        Raises:
            DatabaseError: If ``initialize()`` has not been called.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        if self._db_path == ":memory:":
            return sqlite3.connect(":memory:")
        db_file = Path(self._db_path).expanduser()
        db_file.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(db_file))

    def initialize(self) -> None:
        """Open the connection and bring the schema to ``SCHEMA_VERSION``.

        Calling it again on an open database does nothing.
        """
        if self._conn is not None:
            return
        conn = self._connect()
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        self._conn = conn
        self._migrate()
        logger.info("Signal database ready: %s (schema v%d)", self._db_path, self.get_schema_version())

    def _migrate(self) -> None:
        conn = self.connection
        conn.executescript(_SCHEMA_V1)
        found = self.get_schema_version()
        if found >= SCHEMA_VERSION:
            return

        for version in sorted(_MIGRATIONS):
            if version <= found:
                continue
            ddl, summary = _MIGRATIONS[version]
            conn.executescript(ddl)
            logger.info("Applied schema v%d: %s", version, summary)

        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        conn.commit()
        if found:
            logger.info("Signal database migrated from v%d to v%d", found, SCHEMA_VERSION)

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.debug("Signal database closed: %s", self._db_path)

    def __enter__(self) -> SignalDatabase:
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
