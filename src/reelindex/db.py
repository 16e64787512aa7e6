"""SQLite store shared by the API-facing service and the worker processes.

Connections run in autocommit mode (isolation_level=None) so transactions are
always explicit: `Database.transaction()` issues BEGIN IMMEDIATE, which takes
SQLite's reserved write lock up front. Two processes can therefore never
interleave a read-then-write sequence inside a transaction; the second one
waits (busy_timeout) until the first commits.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('queued', 'running', 'done', 'error')),
    item_id TEXT,
    error TEXT,
    allow_inference INTEGER NOT NULL DEFAULT 1,
    refresh INTEGER NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    lease_owner TEXT,
    lease_expires_at TEXT,
    last_heartbeat_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK ((lease_owner IS NULL) = (lease_expires_at IS NULL)),
    CHECK (attempts <= max_attempts)
);

CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_url ON jobs(url, created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_item ON jobs(item_id);

CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    platform TEXT NOT NULL,
    url TEXT NOT NULL,
    title TEXT,
    author_name TEXT,
    published_at TEXT,
    topics TEXT NOT NULL DEFAULT '[]',
    is_recipe INTEGER NOT NULL DEFAULT 0,
    storage_dir TEXT,
    thumb_url TEXT,
    summary TEXT,
    embedding BLOB,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_platform ON items(platform);
CREATE INDEX IF NOT EXISTS idx_items_recipe ON items(is_recipe);
CREATE INDEX IF NOT EXISTS idx_items_created ON items(created_at);

CREATE TABLE IF NOT EXISTS item_json (
    item_id TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    kind TEXT NOT NULL CHECK (kind IN ('meta', 'analysis', 'recipe')),
    body TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (item_id, kind)
);
"""


class Database:
    def __init__(self, path: Path, *, busy_timeout_ms: int = 30000) -> None:
        self.path = Path(path)
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms};")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def _init_db(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(SCHEMA)
            conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")
        finally:
            conn.close()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for reads and single-statement writes."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolled back on any exception."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()
