"""SQLite-backed TTL cache of pipeline results, keyed by URL fingerprint.

Entries are never evicted automatically. Stale rows stay on disk until
`purge_stale()` is called by an operator.
"""
from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .utils import parse_iso, utc_iso, utc_now

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class ContentCache:
    """TTL cache mapping sha1(url) to the last pipeline result for that URL."""

    def __init__(
        self,
        db_path: Path,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db_path = Path(db_path)
        self.ttl = timedelta(seconds=float(ttl_seconds))
        self._clock = clock
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.execute("PRAGMA busy_timeout=30000;")
        return conn

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS content_cache (
                    cache_key TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    written_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_content_cache_written
                ON content_cache(written_at)
            """)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def fingerprint(url: str) -> str:
        return hashlib.sha1(url.encode("utf-8")).hexdigest()

    def _is_fresh(self, written_at: str) -> bool:
        try:
            age = self._clock() - parse_iso(written_at)
        except ValueError:
            return False
        return age < self.ttl

    def read(self, url: str) -> Optional[Dict[str, Any]]:
        """Return the cached payload when fresh; anything else is a miss."""
        key = self.fingerprint(url)
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT payload_json, written_at FROM content_cache WHERE cache_key = ?",
                    (key,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            log.warning("Cache read failed for %s: %s", key, e)
            return None

        if not row:
            return None
        payload_json, written_at = row
        if not self._is_fresh(written_at):
            log.debug("Cache entry %s is stale (written %s)", key, written_at)
            return None
        try:
            payload = json.loads(payload_json)
        except json.JSONDecodeError:
            log.warning("Cache entry %s is corrupt; treating as a miss", key)
            return None
        return payload if isinstance(payload, dict) else None

    def write(self, url: str, payload: Dict[str, Any]) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO content_cache (cache_key, url, payload_json, written_at)
                VALUES (?, ?, ?, ?)
                """,
                (self.fingerprint(url), url, json.dumps(payload, ensure_ascii=False), utc_iso(self._clock())),
            )
            conn.commit()
        finally:
            conn.close()

    def purge_stale(self) -> int:
        """Delete entries older than the TTL. Returns the number removed."""
        cutoff = utc_iso(self._clock() - self.ttl)
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM content_cache WHERE written_at <= ?", (cutoff,))
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()
