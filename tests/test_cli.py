"""Tests for the reelindex command line."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from reelindex.cli import main


@pytest.fixture
def profile(tmp_path, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    path = tmp_path / "profile.yaml"
    path.write_text(
        f"storage:\n  data_dir: {(tmp_path / 'data').as_posix()}\n"
        "pipeline:\n  use_video_analyzer: false\n"
        "extract:\n  allowed_hosts: [youtube.com]\n",
        encoding="utf-8",
    )
    with patch("reelindex.cli.setup_logging"):
        yield str(path)


def test_ingest_then_job(profile, capsys):
    main(["--profile", profile, "ingest", "https://www.youtube.com/shorts/abc123"])
    queued = json.loads(capsys.readouterr().out)
    assert queued["status"] == "queued"
    assert queued["created"] is True

    main(["--profile", profile, "job", queued["job_id"]])
    job = json.loads(capsys.readouterr().out)
    assert job["url"] == "https://www.youtube.com/shorts/abc123"

    main(["--profile", profile, "job", "--status", "queued"])
    assert queued["job_id"] in capsys.readouterr().out


def test_ingest_rejects_foreign_host(profile, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--profile", profile, "ingest", "https://vimeo.com/1"])
    assert exc.value.code == 1
    assert "allowed: youtube.com" in capsys.readouterr().err


def test_ingest_batch_from_file(profile, tmp_path, capsys):
    urls = tmp_path / "urls.txt"
    urls.write_text("https://www.youtube.com/shorts/a\n\nhttps://vimeo.com/1\n", encoding="utf-8")
    main(["--profile", profile, "ingest", "--file", str(urls), "https://m.youtube.com/shorts/c"])
    out = json.loads(capsys.readouterr().out)
    assert len(out) == 3
    assert "error" in out[2]


def test_missing_item(profile, capsys):
    with pytest.raises(SystemExit):
        main(["--profile", profile, "item", "youtube-none"])
    assert "Not found" in capsys.readouterr().err


def test_stats_with_facets(profile, capsys):
    main(["--profile", profile, "stats", "--facets"])
    stats = json.loads(capsys.readouterr().out)
    assert stats["items"] == 0
    assert stats["topics"] == []
    assert set(stats["jobs"]) == {"queued", "running", "done", "error"}


def test_worker_once_idle(profile, capsys):
    main(["--profile", profile, "worker", "--once", "--worker-id", "w1"])
    assert "No eligible job." in capsys.readouterr().out
