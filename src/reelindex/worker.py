"""Worker process: claim a job, run the pipeline, persist, complete.

One job at a time per worker. Run several worker processes against the same
database to scale out; the lease manager keeps them from colliding.
"""

from __future__ import annotations

import logging
import os
import socket
import sqlite3
import threading
import uuid
from typing import Any, Optional

from .persistence import PersistenceCoordinator
from .pipeline import PipelineOrchestrator
from .profile import PipelineSettings, QueueSettings
from .queue import Job, JobOutcome, LeaseManager

log = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class HeartbeatTicker:
    """Background thread that keeps a job's lease alive."""

    def __init__(
        self,
        lease_manager: LeaseManager,
        job_id: str,
        worker_id: str,
        *,
        interval_s: float = 15.0,
    ) -> None:
        self.lease_manager = lease_manager
        self.job_id = job_id
        self.worker_id = worker_id
        self.interval_s = float(interval_s)
        self.lost = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "HeartbeatTicker":
        self._thread = threading.Thread(target=self._run, name=f"heartbeat-{self.job_id[:8]}", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                alive = self.lease_manager.heartbeat(self.job_id, self.worker_id)
            except sqlite3.Error as e:
                log.warning("Heartbeat for job %s failed: %s", self.job_id, e)
                continue
            if not alive:
                log.warning("Lost lease on job %s", self.job_id)
                self.lost.set()
                return

    def __enter__(self) -> "HeartbeatTicker":
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.stop()


class Worker:
    def __init__(
        self,
        *,
        lease_manager: LeaseManager,
        orchestrator: PipelineOrchestrator,
        persistence: PersistenceCoordinator,
        extractor: Any,
        queue_settings: Optional[QueueSettings] = None,
        pipeline_settings: Optional[PipelineSettings] = None,
        worker_id: Optional[str] = None,
    ) -> None:
        self.lease_manager = lease_manager
        self.orchestrator = orchestrator
        self.persistence = persistence
        self.extractor = extractor
        self.queue_settings = queue_settings or QueueSettings()
        self.pipeline_settings = pipeline_settings or PipelineSettings()
        self.worker_id = worker_id or default_worker_id()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name=f"worker-{self.worker_id}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)

    def run_forever(self) -> None:
        log.info("Worker %s polling every %.1fs", self.worker_id, self.queue_settings.poll_seconds)
        while not self._stop.is_set():
            try:
                job = self.work_once()
            except sqlite3.Error as e:
                log.error("Queue unavailable: %s", e)
                job = None
            if job is None:
                self._stop.wait(self.queue_settings.poll_seconds)

    def work_once(self) -> Optional[Job]:
        """Process at most one job. Returns the claimed job, or None when idle."""
        job = self.lease_manager.claim_next(self.worker_id, self.queue_settings.lease_seconds)
        if job is None:
            return None

        log.info("Claimed job %s (%s), attempt %d/%d", job.id, job.url, job.attempts + 1, job.max_attempts)
        with HeartbeatTicker(
            self.lease_manager, job.id, self.worker_id, interval_s=self.queue_settings.heartbeat_seconds
        ) as ticker:
            outcome = self._process(job)

        completed = self.lease_manager.complete(job.id, self.worker_id, outcome)
        if not completed and ticker.lost.is_set():
            log.warning("Job %s: lease was lost while processing, result left to the new owner", job.id)
        return job

    def _process(self, job: Job) -> JobOutcome:
        try:
            rejection = self._check_duration(job.url)
            if rejection:
                return JobOutcome.rejected(rejection)

            result = self.orchestrator.run(job.url, allow_inference=job.allow_inference, refresh=job.refresh)
            item_id = self.persistence.upsert(result)
            return JobOutcome.success(item_id)
        except Exception as e:
            log.exception("Job %s failed", job.id)
            return JobOutcome.failure(str(e) or type(e).__name__)

    def _check_duration(self, url: str) -> Optional[str]:
        limit = self.pipeline_settings.max_video_seconds
        if not limit:
            return None
        probe = self.extractor.probe(url)
        if probe.duration_sec and probe.duration_sec > limit:
            return f"Video too long ({probe.duration_sec:g}s > {limit:g}s)"
        return None
