"""Tests for the service facade and vector search."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from reelindex.errors import EmbeddingError
from reelindex.persistence import PersistenceCoordinator
from reelindex.pipeline import PipelineResult
from reelindex.queue import JobOutcome
from reelindex.search import ItemSearch, l2_distances
from reelindex.service import HostNotAllowedError, ReelIndexService

from conftest import make_meta

DIM = 4


@pytest.fixture
def embedder():
    emb = MagicMock()
    emb.embed.return_value = [1.0, 0.0, 0.0, 0.0]
    return emb


@pytest.fixture
def service(db, manager, embedder):
    return ReelIndexService(db=db, lease_manager=manager, search=ItemSearch(db, embedder, embedding_dim=DIM))


def _store(db, tmp_path, post_id, *, vector, topics=("snack",), is_recipe=True, platform="youtube"):
    meta = make_meta(
        tmp_path,
        platform=platform,
        post_id=post_id,
        url=f"https://www.youtube.com/shorts/{post_id}",
        title=f"Video {post_id}",
    )
    result = PipelineResult(
        meta=meta,
        analysis={
            "content_type": "recipe" if is_recipe else "humor",
            "summary": f"Summary of {post_id}",
            "topics": list(topics),
        },
        recipe={"title": f"Recipe {post_id}"} if is_recipe else None,
        embedding=vector,
    )
    return PersistenceCoordinator(db, embedding_dim=DIM).upsert(result)


class TestIngest:
    def test_ingest_and_dedupe(self, service):
        first = service.ingest("https://www.youtube.com/shorts/abc123")
        again = service.ingest("https://www.youtube.com/shorts/abc123")
        assert first["status"] == "queued"
        assert first["created"] is True
        assert again == {**first, "created": False}

    def test_refresh_always_creates(self, service):
        first = service.ingest("https://www.youtube.com/shorts/abc123")
        second = service.ingest("https://www.youtube.com/shorts/abc123", refresh=True)
        assert second["created"] is True
        assert second["job_id"] != first["job_id"]

    def test_empty_url(self, service):
        with pytest.raises(ValueError):
            service.ingest("   ")

    def test_allowed_hosts(self, db, manager, embedder):
        svc = ReelIndexService(
            db=db,
            lease_manager=manager,
            search=ItemSearch(db, embedder, embedding_dim=DIM),
            allowed_hosts=["youtube.com", "instagram.com"],
        )
        assert svc.ingest("https://m.youtube.com/shorts/x")["created"]
        with pytest.raises(HostNotAllowedError) as exc:
            svc.ingest("https://evil.example.com/v")
        assert exc.value.allowed == ["youtube.com", "instagram.com"]

    def test_batch_reports_rejects(self, service):
        out = service.ingest_batch(["https://www.youtube.com/shorts/a", "", "https://www.youtube.com/shorts/b"])
        assert [("error" in o) for o in out] == [False, True, False]
        assert out[1]["error"] == "Missing 'url'"

    def test_job_status_and_list(self, service):
        job_id = service.ingest("https://www.youtube.com/shorts/a")["job_id"]
        assert service.job_status(job_id)["url"] == "https://www.youtube.com/shorts/a"
        assert [j["id"] for j in service.list_jobs(status="queued")] == [job_id]
        with pytest.raises(KeyError):
            service.job_status("nope")


class TestItems:
    def test_get_item(self, service, db, tmp_path):
        item_id = _store(db, tmp_path, "abc123", vector=[0.1, 0.2, 0.3, 0.4])
        out = service.get_item(item_id)
        assert out["item"]["topics"] == ["snack"]
        assert out["item"]["is_recipe"] is True
        assert out["item"]["has_embedding"] is True
        assert out["meta"]["post_id"] == "abc123"
        assert out["recipe"] == {"title": "Recipe abc123"}
        assert out["latest_job"] is None
        assert service.get_analysis(item_id)["summary"] == "Summary of abc123"

    def test_missing_item(self, service):
        with pytest.raises(KeyError, match="item_not_found"):
            service.get_item("youtube-none")
        with pytest.raises(KeyError, match="analysis_not_found"):
            service.get_analysis("youtube-none")

    def test_rebuild_item(self, service, manager, db, tmp_path):
        item_id = _store(db, tmp_path, "abc123", vector=None)
        out = service.rebuild_item(item_id)
        job = manager.get_job(out["job_id"])
        assert job.refresh is True
        assert job.url == "https://www.youtube.com/shorts/abc123"


class TestFacets:
    def test_topics_platforms_stats(self, service, db, tmp_path):
        _store(db, tmp_path, "a", vector=[1, 0, 0, 0], topics=["Snack", "vegan"])
        _store(db, tmp_path, "b", vector=None, topics=["snack"], is_recipe=False)
        _store(db, tmp_path, "c", vector=[0, 1, 0, 0], topics=[], platform="tiktok")
        service.ingest("https://www.youtube.com/shorts/zzz")

        assert service.topics() == [{"topic": "snack", "count": 2}, {"topic": "vegan", "count": 1}]
        assert service.platforms() == [{"platform": "youtube", "count": 2}, {"platform": "tiktok", "count": 1}]
        stats = service.stats()
        assert (stats["items"], stats["recipes"], stats["embeddings"]) == (3, 2, 2)
        assert stats["jobs"]["queued"] == 1
        assert stats["jobs"]["done"] == 0


class TestSearch:
    def test_l2_distances(self):
        m = np.array([[0, 0], [3, 4]], dtype=np.float32)
        np.testing.assert_allclose(l2_distances(m, np.array([0, 0], dtype=np.float32)), [0.0, 5.0])

    def test_nearest_first(self, service, db, tmp_path):
        _store(db, tmp_path, "far", vector=[0, 0, 1, 0])
        _store(db, tmp_path, "near", vector=[0.9, 0.1, 0, 0])
        _store(db, tmp_path, "novec", vector=None)

        out = service.search("chickpeas", k=5)
        ids = [r["id"] for r in out["results"]]
        assert ids == ["youtube-near", "youtube-far"]
        assert out["results"][0]["distance"] < out["results"][1]["distance"]
        assert out["results"][0]["snippet"] == "Summary of near"

    def test_k_limits(self, service, db, tmp_path):
        for i in range(3):
            _store(db, tmp_path, f"v{i}", vector=[float(i), 0, 0, 0])
        assert len(service.search("x", k=2)["results"]) == 2

    def test_filters(self, service, db, tmp_path):
        _store(db, tmp_path, "r", vector=[1, 0, 0, 0], topics=["Pasta"])
        _store(db, tmp_path, "h", vector=[1, 0, 0, 0], topics=["fun"], is_recipe=False)
        _store(db, tmp_path, "t", vector=[1, 0, 0, 0], topics=["pasta"], platform="tiktok")

        def ids(**kw):
            return sorted(r["id"] for r in service.search("x", **kw)["results"])

        assert ids(is_recipe=False) == ["youtube-h"]
        assert ids(platform="tiktok") == ["tiktok-t"]
        assert ids(topic="PASTA") == ["tiktok-t", "youtube-r"]

    def test_empty_query(self, service):
        with pytest.raises(ValueError):
            service.search("  ")

    def test_embedding_failure(self, service, embedder):
        embedder.embed.return_value = None
        with pytest.raises(EmbeddingError):
            service.search("x")

    def test_wrong_query_dimension(self, service, embedder):
        embedder.embed.return_value = [1.0, 0.0]
        with pytest.raises(EmbeddingError):
            service.search("x")


class TestReconcile:
    def test_requeues_items_without_vectors(self, service, manager, db, tmp_path):
        _store(db, tmp_path, "ok", vector=[1, 0, 0, 0])
        missing = _store(db, tmp_path, "lost", vector=None)

        assert service.items_missing_embedding() == [missing]
        assert service.reconcile_embeddings(dry_run=True) == [{"item_id": missing, "job_id": None}]
        assert manager.count_by_status()["queued"] == 0

        out = service.reconcile_embeddings()
        assert len(out) == 1
        assert manager.get_job(out[0]["job_id"]).refresh is True

        # already queued: nothing new
        assert service.reconcile_embeddings() == []

    def test_skips_running_job(self, service, manager, db, tmp_path):
        missing = _store(db, tmp_path, "lost", vector=None)
        job, _ = manager.enqueue("https://www.youtube.com/shorts/lost")
        manager.claim_next("w1")
        assert service.reconcile_embeddings() == []

        manager.complete(job.id, "w1", JobOutcome.success(missing))
        assert len(service.reconcile_embeddings()) == 1
