"""Application facade and runtime wiring.

`build_runtime(profile)` constructs every provider once and injects it;
`ReelIndexService` exposes the operations an HTTP layer or the CLI calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .ai.embeddings import EmbeddingClient, EmbeddingConfig
from .ai.gemini import GeminiConfig, GeminiVideoAnalyzer
from .ai.llm_client import LLMClient, LLMClientConfig
from .ai.text_analyzer import TextAnalyzer
from .cache import ContentCache
from .db import Database
from .ingest.policy import hostname_allowed
from .ingest.ytdlp_runner import YtDlpExtractor
from .persistence import PersistenceCoordinator
from .pipeline import PipelineOrchestrator
from .profile import PipelineSettings, QueueSettings, StoragePaths, resolve_secret
from .queue import LeaseManager
from .search import ItemSearch
from .tools import ExternalToolRunner
from .transcription import BackendNotAvailableError, TranscriberConfig, get_transcriber
from .worker import Worker

log = logging.getLogger(__name__)


class HostNotAllowedError(ValueError):
    def __init__(self, url: str, allowed: Sequence[str]):
        super().__init__(f"Host not allowed: {url}")
        self.allowed = list(allowed)


def _loads(body: Optional[str]) -> Any:
    return json.loads(body) if body else None


class ReelIndexService:
    def __init__(
        self,
        *,
        db: Database,
        lease_manager: LeaseManager,
        search: ItemSearch,
        allowed_hosts: Iterable[str] = (),
    ) -> None:
        self.db = db
        self.lease_manager = lease_manager
        self._search = search
        self.allowed_hosts = [h.strip().lower() for h in allowed_hosts if h and h.strip()]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def ingest(self, url: str, *, allow_inference: bool = True, refresh: bool = False) -> Dict[str, Any]:
        """Queue `url`. Returns {job_id, status, created}.

        Raises:
            ValueError: empty URL
            HostNotAllowedError: URL host outside the configured allow-list
        """
        url = (url or "").strip()
        if not url:
            raise ValueError("Missing 'url'")
        if self.allowed_hosts and not hostname_allowed(url, self.allowed_hosts):
            raise HostNotAllowedError(url, self.allowed_hosts)

        job, created = self.lease_manager.enqueue(url, allow_inference=allow_inference, refresh=refresh)
        return {"job_id": job.id, "status": job.status, "created": created}

    def ingest_batch(
        self,
        urls: Iterable[str],
        *,
        allow_inference: bool = True,
        refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        """Queue several URLs. Rejected URLs get an `error` entry instead of a job."""
        out: List[Dict[str, Any]] = []
        for url in urls:
            try:
                res = self.ingest(url, allow_inference=allow_inference, refresh=refresh)
            except ValueError as e:
                out.append({"url": url, "error": str(e)})
                continue
            out.append({"url": url, **res})
        return out

    def job_status(self, job_id: str) -> Dict[str, Any]:
        return self.lease_manager.get_job(job_id).to_dict()

    def list_jobs(self, *, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        return [j.to_dict() for j in self.lease_manager.list_jobs(status=status, limit=limit)]

    def rebuild_item(self, item_id: str) -> Dict[str, Any]:
        job = self.lease_manager.rebuild(item_id)
        return {"job_id": job.id, "status": job.status}

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> Dict[str, Any]:
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT id, platform, url, title, author_name, published_at, topics, is_recipe,
                       storage_dir, thumb_url, summary, created_at, updated_at,
                       embedding IS NOT NULL AS has_embedding
                FROM items WHERE id = ?
                """,
                (item_id,),
            ).fetchone()
            if not row:
                raise KeyError("item_not_found")
            bodies = {
                r["kind"]: _loads(r["body"])
                for r in conn.execute("SELECT kind, body FROM item_json WHERE item_id = ?", (item_id,))
            }

        item = dict(row)
        item["topics"] = json.loads(item["topics"] or "[]")
        item["is_recipe"] = bool(item["is_recipe"])
        item["has_embedding"] = bool(item["has_embedding"])
        latest = self.lease_manager.latest_job_for_item(item_id)
        return {
            "item": item,
            "meta": bodies.get("meta"),
            "analysis": bodies.get("analysis"),
            "recipe": bodies.get("recipe"),
            "latest_job": latest.to_dict() if latest else None,
        }

    def get_analysis(self, item_id: str) -> Dict[str, Any]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT body FROM item_json WHERE item_id = ? AND kind = 'analysis'",
                (item_id,),
            ).fetchone()
        if not row:
            raise KeyError("analysis_not_found")
        return json.loads(row["body"])

    def search(
        self,
        q: str,
        *,
        k: int = 10,
        is_recipe: Optional[bool] = None,
        platform: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> Dict[str, Any]:
        results = self._search.search(q, k=k, is_recipe=is_recipe, platform=platform, topic=topic)
        return {"q": q, "k": k, "results": results}

    # ------------------------------------------------------------------
    # Facets
    # ------------------------------------------------------------------

    def topics(self, limit: int = 200) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT LOWER(t.value) AS topic, COUNT(*) AS count
                FROM items, json_each(items.topics) AS t
                WHERE t.value IS NOT NULL AND t.value != ''
                GROUP BY 1
                ORDER BY count DESC, topic ASC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        return [dict(r) for r in rows]

    def platforms(self) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT platform, COUNT(*) AS count FROM items GROUP BY platform ORDER BY count DESC, platform ASC"
            ).fetchall()
        return [dict(r) for r in rows]

    def stats(self) -> Dict[str, Any]:
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS items,
                       COALESCE(SUM(is_recipe), 0) AS recipes,
                       COALESCE(SUM(embedding IS NOT NULL), 0) AS embeddings
                FROM items
                """
            ).fetchone()
        return {
            "items": row["items"],
            "recipes": row["recipes"],
            "embeddings": row["embeddings"],
            "jobs": self.lease_manager.count_by_status(),
        }

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def items_missing_embedding(self) -> List[str]:
        """Items that have an analysis artifact but no vector."""
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT i.id FROM items i
                JOIN item_json j ON j.item_id = i.id AND j.kind = 'analysis'
                WHERE i.embedding IS NULL
                ORDER BY i.created_at
                """
            ).fetchall()
        return [r["id"] for r in rows]

    def reconcile_embeddings(self, *, dry_run: bool = False) -> List[Dict[str, Any]]:
        """Re-enqueue items whose vector write never landed.

        Items that already have a queued or running job are skipped.
        """
        out: List[Dict[str, Any]] = []
        for item_id in self.items_missing_embedding():
            if self._has_pending_job(item_id):
                continue
            if dry_run:
                out.append({"item_id": item_id, "job_id": None})
                continue
            job = self.lease_manager.rebuild(item_id)
            log.info("Re-enqueued %s for embedding as job %s", item_id, job.id)
            out.append({"item_id": item_id, "job_id": job.id})
        return out

    def _has_pending_job(self, item_id: str) -> bool:
        # rebuild jobs only get their item_id on completion, so match the URL too
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM jobs
                WHERE status IN ('queued', 'running')
                  AND (item_id = ? OR url = (SELECT url FROM items WHERE id = ?))
                LIMIT 1
                """,
                (item_id, item_id),
            ).fetchone()
        return row is not None


@dataclass
class Runtime:
    profile: Dict[str, Any]
    paths: StoragePaths
    queue_settings: QueueSettings
    pipeline_settings: PipelineSettings
    db: Database
    lease_manager: LeaseManager
    extractor: YtDlpExtractor
    orchestrator: PipelineOrchestrator
    persistence: PersistenceCoordinator
    service: ReelIndexService

    def make_worker(self, worker_id: Optional[str] = None) -> Worker:
        return Worker(
            lease_manager=self.lease_manager,
            orchestrator=self.orchestrator,
            persistence=self.persistence,
            extractor=self.extractor,
            queue_settings=self.queue_settings,
            pipeline_settings=self.pipeline_settings,
            worker_id=worker_id,
        )


def build_runtime(profile: Dict[str, Any]) -> Runtime:
    paths = StoragePaths.from_profile(profile.get("storage", {}))
    queue_settings = QueueSettings.from_profile(profile.get("queue", {}))
    pipeline_settings = PipelineSettings.from_profile(profile.get("pipeline", {}))
    extract_cfg = profile.get("extract", {})
    ai_cfg = profile.get("ai", {})
    text_cfg = ai_cfg.get("text", {})
    embedding_cfg = ai_cfg.get("embedding", {})
    video_cfg = ai_cfg.get("video", {})
    speech_cfg = profile.get("speech", {})

    db = Database(paths.db_path)
    lease_manager = LeaseManager(
        db,
        max_attempts=queue_settings.max_attempts,
        lease_seconds=queue_settings.lease_seconds,
        error_max_chars=queue_settings.error_max_chars,
    )
    runner = ExternalToolRunner(timeout_s=float(extract_cfg.get("tool_timeout_s", 600)))
    cookies = extract_cfg.get("cookies_file")
    extractor = YtDlpExtractor(
        paths.downloads_dir,
        cookies_file=Path(cookies) if cookies else None,
        subtitle_langs=str(extract_cfg.get("subtitle_langs") or "de.*,en.*"),
    )

    try:
        transcriber = get_transcriber(
            TranscriberConfig.from_profile(speech_cfg, api_key=resolve_secret(speech_cfg, "ASR_API_KEY")),
            runner=runner,
        )
    except BackendNotAvailableError as e:
        log.warning("Transcription disabled: %s", e)
        transcriber = None

    video_analyzer = None
    if pipeline_settings.use_video_analyzer:
        gemini_key = resolve_secret(video_cfg, "GEMINI_API_KEY")
        if gemini_key:
            video_analyzer = GeminiVideoAnalyzer(
                GeminiConfig.from_profile(
                    video_cfg,
                    api_key=gemini_key,
                    inference_ceiling=pipeline_settings.inference_confidence_ceiling,
                ),
                runner=runner,
            )
        else:
            log.warning("GEMINI_API_KEY not set; video analysis disabled, using text analysis only")

    text_analyzer = TextAnalyzer(
        LLMClient(LLMClientConfig.from_profile(text_cfg, api_key=resolve_secret(text_cfg, "AI_API_KEY"))),
        inference_ceiling=pipeline_settings.inference_confidence_ceiling,
    )
    embedder = EmbeddingClient(
        EmbeddingConfig.from_profile(
            embedding_cfg,
            default_base_url=str(text_cfg.get("base_url") or "https://api.openai.com/v1"),
            api_key=resolve_secret(embedding_cfg, "AI_API_KEY"),
        )
    )
    cache = ContentCache(paths.cache_db_path, ttl_seconds=pipeline_settings.cache_ttl_seconds)

    orchestrator = PipelineOrchestrator(
        extractor=extractor,
        transcriber=transcriber,
        video_analyzer=video_analyzer,
        text_analyzer=text_analyzer,
        embedder=embedder,
        cache=cache,
        settings=pipeline_settings,
    )
    persistence = PersistenceCoordinator(db, embedding_dim=embedder.dim)
    service = ReelIndexService(
        db=db,
        lease_manager=lease_manager,
        search=ItemSearch(db, embedder, embedding_dim=embedder.dim),
        allowed_hosts=extract_cfg.get("allowed_hosts") or (),
    )
    return Runtime(
        profile=profile,
        paths=paths,
        queue_settings=queue_settings,
        pipeline_settings=pipeline_settings,
        db=db,
        lease_manager=lease_manager,
        extractor=extractor,
        orchestrator=orchestrator,
        persistence=persistence,
        service=service,
    )
