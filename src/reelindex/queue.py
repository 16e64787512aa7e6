"""Lease-based job queue on top of the shared SQLite store.

State machine:

    queued --claim--> running --complete(success)--> done
                         |----complete(failure)--> queued   (attempts < max_attempts)
                         |----complete(failure)--> error    (attempts == max_attempts)
                         |----complete(rejected)-> error    (attempts unchanged)
                         `----lease expires------> reclaimable by any worker

Mutual exclusion comes from the database, not from a process-local lock:
every claim runs inside BEGIN IMMEDIATE, and the UPDATE re-checks
eligibility in its WHERE clause, so a row another transaction already moved
to running (with a live lease) is never claimed twice.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .db import Database
from .errors import LeaseLostError
from .utils import utc_iso, utc_now

log = logging.getLogger(__name__)

JOB_STATUSES = ("queued", "running", "done", "error")
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LEASE_SECONDS = 120
ERROR_MAX_CHARS = 1000

# Eligible: queued, or running whose lease is gone or expired.
_ELIGIBLE_SQL = (
    "(status = 'queued' OR (status = 'running' "
    "AND (lease_expires_at IS NULL OR lease_expires_at < ?)))"
)


@dataclass
class Job:
    id: str
    url: str
    status: str
    item_id: Optional[str]
    error: Optional[str]
    allow_inference: bool
    refresh: bool
    attempts: int
    max_attempts: int
    lease_owner: Optional[str]
    lease_expires_at: Optional[str]
    last_heartbeat_at: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Job":
        d = dict(row)
        d["allow_inference"] = bool(d["allow_inference"])
        d["refresh"] = bool(d["refresh"])
        return cls(**d)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "status": self.status,
            "item_id": self.item_id,
            "error": self.error,
            "allow_inference": self.allow_inference,
            "refresh": self.refresh,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "lease_owner": self.lease_owner,
            "lease_expires_at": self.lease_expires_at,
            "last_heartbeat_at": self.last_heartbeat_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class JobOutcome:
    kind: str  # "success" | "failure" | "rejected"
    item_id: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, item_id: str) -> "JobOutcome":
        return cls(kind="success", item_id=item_id)

    @classmethod
    def failure(cls, message: str) -> "JobOutcome":
        return cls(kind="failure", message=message)

    @classmethod
    def rejected(cls, message: str) -> "JobOutcome":
        """Terminal error that does not consume an attempt (e.g. video too long)."""
        return cls(kind="rejected", message=message)


def truncate_error(message: Optional[str], max_chars: int = ERROR_MAX_CHARS) -> Optional[str]:
    if message is None:
        return None
    message = str(message)
    return message[:max_chars]


class LeaseManager:
    def __init__(
        self,
        db: Database,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        error_max_chars: int = ERROR_MAX_CHARS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.db = db
        self.max_attempts = int(max_attempts)
        self.lease_seconds = int(lease_seconds)
        self.error_max_chars = int(error_max_chars)
        self._clock = clock

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, url: str, *, allow_inference: bool = True, refresh: bool = False) -> Tuple[Job, bool]:
        """Queue `url`, or return the newest existing job for it.

        Returns (job, created). With refresh=True a new job is always inserted.
        """
        now = utc_iso(self._clock())
        with self.db.transaction() as conn:
            if not refresh:
                row = conn.execute(
                    "SELECT * FROM jobs WHERE url = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
                    (url,),
                ).fetchone()
                if row:
                    return Job.from_row(row), False
            job_id = uuid.uuid4().hex
            conn.execute(
                """
                INSERT INTO jobs (
                    id, url, status, allow_inference, refresh, attempts, max_attempts,
                    created_at, updated_at
                ) VALUES (?, ?, 'queued', ?, ?, 0, ?, ?, ?)
                """,
                (job_id, url, int(bool(allow_inference)), int(bool(refresh)), self.max_attempts, now, now),
            )
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        log.info("Queued job %s for %s (refresh=%s)", job_id, url, refresh)
        return Job.from_row(row), True

    def rebuild(self, item_id: str) -> Job:
        """Queue a fresh, cache-bypassing job for an existing item."""
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT url, allow_inference FROM jobs WHERE item_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (item_id,),
            ).fetchone()
            if row is None:
                row = conn.execute("SELECT url, 1 AS allow_inference FROM items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise KeyError(f"item_not_found: {item_id}")
        job, _ = self.enqueue(row["url"], allow_inference=bool(row["allow_inference"]), refresh=True)
        return job

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def claim_next(self, worker_id: str, lease_seconds: Optional[int] = None) -> Optional[Job]:
        """Atomically lease the oldest eligible job to `worker_id`."""
        lease = timedelta(seconds=self.lease_seconds if lease_seconds is None else int(lease_seconds))
        now_dt = self._clock()
        now = utc_iso(now_dt)
        expires = utc_iso(now_dt + lease)

        with self.db.transaction() as conn:
            candidate = conn.execute(
                f"SELECT id, status, lease_owner FROM jobs WHERE {_ELIGIBLE_SQL} "
                "ORDER BY created_at, rowid LIMIT 1",
                (now,),
            ).fetchone()
            if candidate is None:
                return None
            cur = conn.execute(
                f"""
                UPDATE jobs
                SET status = 'running', lease_owner = ?, lease_expires_at = ?,
                    last_heartbeat_at = ?, updated_at = ?
                WHERE id = ? AND {_ELIGIBLE_SQL}
                """,
                (worker_id, expires, now, now, candidate["id"], now),
            )
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (candidate["id"],)).fetchone()

        if candidate["status"] == "running":
            log.warning(
                "Reclaimed job %s after lease expiry (previous owner %s)",
                candidate["id"],
                candidate["lease_owner"],
            )
        return Job.from_row(row)

    def heartbeat(self, job_id: str, worker_id: str, lease_seconds: Optional[int] = None) -> bool:
        """Extend the lease while `worker_id` still owns it. False when ownership is lost."""
        try:
            self._extend_lease(job_id, worker_id, lease_seconds)
        except LeaseLostError as e:
            log.warning("%s", e)
            return False
        return True

    def _extend_lease(self, job_id: str, worker_id: str, lease_seconds: Optional[int]) -> None:
        lease = timedelta(seconds=self.lease_seconds if lease_seconds is None else int(lease_seconds))
        now_dt = self._clock()
        now = utc_iso(now_dt)
        with self.db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE jobs
                SET lease_expires_at = ?, last_heartbeat_at = ?, updated_at = ?
                WHERE id = ? AND status = 'running' AND lease_owner = ?
                """,
                (utc_iso(now_dt + lease), now, now, job_id, worker_id),
            )
            updated = cur.rowcount
        if updated != 1:
            raise LeaseLostError(f"Heartbeat for job {job_id} rejected: {worker_id} no longer holds the lease")

    def complete(self, job_id: str, worker_id: str, outcome: JobOutcome) -> bool:
        """Apply `outcome` if `worker_id` still owns the lease. False otherwise."""
        try:
            status = self._apply_outcome(job_id, worker_id, outcome)
        except LeaseLostError as e:
            log.warning("%s; outcome %s discarded", e, outcome.kind)
            return False
        log.info("Job %s -> %s", job_id, status)
        return True

    def _apply_outcome(self, job_id: str, worker_id: str, outcome: JobOutcome) -> str:
        now = utc_iso(self._clock())
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT status, lease_owner, attempts, max_attempts FROM jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            if row is None or row["status"] != "running" or row["lease_owner"] != worker_id:
                raise LeaseLostError(f"Job {job_id} is no longer leased by {worker_id}")

            if outcome.kind == "success":
                if not outcome.item_id:
                    raise ValueError("success outcome requires an item_id")
                status, attempts, item_id, error = "done", row["attempts"], outcome.item_id, None
            elif outcome.kind == "failure":
                attempts = min(row["attempts"] + 1, row["max_attempts"])
                status = "error" if attempts >= row["max_attempts"] else "queued"
                item_id, error = None, truncate_error(outcome.message, self.error_max_chars)
            elif outcome.kind == "rejected":
                status, attempts, item_id = "error", row["attempts"], None
                error = truncate_error(outcome.message, self.error_max_chars)
            else:
                raise ValueError(f"unknown outcome kind: {outcome.kind}")

            conn.execute(
                """
                UPDATE jobs
                SET status = ?, attempts = ?, item_id = COALESCE(?, item_id), error = ?,
                    lease_owner = NULL, lease_expires_at = NULL, updated_at = ?
                WHERE id = ? AND lease_owner = ?
                """,
                (status, attempts, item_id, error, now, job_id, worker_id),
            )
        return status

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if not row:
            raise KeyError(f"job_not_found: {job_id}")
        return Job.from_row(row)

    def list_jobs(self, *, status: Optional[str] = None, limit: int = 50) -> List[Job]:
        if status is not None and status not in JOB_STATUSES:
            raise ValueError(f"unknown status: {status}")
        with self.db.connect() as conn:
            if status:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                    (status, int(limit)),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                    (int(limit),),
                ).fetchall()
        return [Job.from_row(r) for r in rows]

    def latest_job_for_item(self, item_id: str) -> Optional[Job]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE item_id = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (item_id,),
            ).fetchone()
        return Job.from_row(row) if row else None

    def count_by_status(self) -> Dict[str, int]:
        counts = {s: 0 for s in JOB_STATUSES}
        with self.db.connect() as conn:
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"):
                counts[row["status"]] = row["n"]
        return counts
