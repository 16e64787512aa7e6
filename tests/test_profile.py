"""Tests for profile loading, derived settings and the doctor report."""

from __future__ import annotations

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from reelindex.doctor import run_doctor
from reelindex.profile import (
    PipelineSettings,
    QueueSettings,
    StoragePaths,
    default_profile,
    load_profile,
    resolve_secret,
)
from reelindex.tools import ToolResult


class TestLoadProfile:
    def test_none_is_defaults(self):
        assert load_profile(None) == default_profile()

    def test_deep_merge(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text("queue:\n  lease_seconds: 300\nai:\n  text:\n    model: local-llm\n", encoding="utf-8")
        profile = load_profile(path)
        assert profile["queue"]["lease_seconds"] == 300
        assert profile["queue"]["heartbeat_seconds"] == 15
        assert profile["ai"]["text"]["model"] == "local-llm"
        assert profile["ai"]["text"]["api_key_env"] == "AI_API_KEY"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_profile(tmp_path / "nope.yaml")

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_profile(path)


class TestSettings:
    def test_storage_defaults(self):
        paths = StoragePaths.from_profile({"data_dir": "/srv/ri"})
        assert paths.db_path == Path("/srv/ri/reelindex.sqlite")
        assert paths.downloads_dir == Path("/srv/ri/downloads")
        assert paths.cache_db_path == Path("/srv/ri/cache/content_cache.sqlite")

    def test_heartbeat_must_be_shorter_than_lease(self):
        with pytest.raises(ValueError):
            QueueSettings(lease_seconds=10, heartbeat_seconds=10)

    def test_video_analyzer_drives_download_and_subtitles(self):
        on = PipelineSettings.from_profile({"use_video_analyzer": True})
        off = PipelineSettings.from_profile({"use_video_analyzer": False})
        assert (on.download_video, on.want_transcript) == (True, False)
        assert (off.download_video, off.want_transcript) == (False, True)

        forced = PipelineSettings.from_profile({"use_video_analyzer": False, "download_video": True})
        assert forced.download_video is True

    def test_zero_disables_duration_check(self):
        assert PipelineSettings.from_profile({"max_video_seconds": 0}).max_video_seconds == 0


class TestResolveSecret:
    def test_named_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "abc")
        assert resolve_secret({"api_key_env": "MY_KEY"}, "AI_API_KEY") == "abc"

    def test_openai_fallback(self, monkeypatch):
        monkeypatch.delenv("AI_API_KEY", raising=False)
        monkeypatch.delenv("ASR_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-x")
        assert resolve_secret({}, "ASR_API_KEY") == "sk-x"

    def test_gemini_has_no_fallback(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-x")
        assert resolve_secret({}, "GEMINI_API_KEY") is None


class TestDoctor:
    def test_all_found(self):
        runner = MagicMock()
        runner.run.return_value = ToolResult(0, "ffmpeg version 6.1\nbuilt with gcc\n", "")
        with patch("reelindex.doctor.shutil.which", side_effect=lambda c: f"/usr/bin/{c}"):
            report = run_doctor(default_profile(), runner=runner)
        assert report.ok is True
        assert report.checks["ffmpeg"]["version"] == "ffmpeg version 6.1"
        assert report.checks["yt_dlp"]["installed"] is True
        assert report.checks["faster_whisper"]["required"] is False

    def test_missing_ffmpeg(self):
        with patch("reelindex.doctor.shutil.which", return_value=None):
            report = run_doctor(default_profile(), runner=MagicMock())
        assert report.ok is False
        assert report.checks["ffprobe"]["found"] is False

    def test_local_asr_required_but_missing(self):
        profile = default_profile()
        profile["speech"]["backend"] = "faster_whisper"
        runner = MagicMock()
        runner.run.return_value = ToolResult(0, "x\n", "")
        real_find_spec = importlib.util.find_spec

        def find_spec(name):
            return None if name == "faster_whisper" else real_find_spec(name)

        with patch("reelindex.doctor.shutil.which", side_effect=lambda c: f"/usr/bin/{c}"), \
                patch("importlib.util.find_spec", side_effect=find_spec):
            report = run_doctor(profile, runner=runner)
        assert report.ok is False
        assert "local-asr" in report.checks["faster_whisper"]["note"]
