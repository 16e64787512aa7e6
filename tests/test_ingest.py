"""Tests for the URL ingest module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from yt_dlp.utils import DownloadError

from reelindex.errors import ExtractionError
from reelindex.ingest.models import ExtractedMeta, ExtractOptions
from reelindex.ingest.policy import classify_url_heuristic, hostname_allowed, platform_from_extractor
from reelindex.ingest.ytdlp_runner import YtDlpExtractor, normalize_info

INFO = {
    "id": "abc123",
    "extractor_key": "Youtube",
    "webpage_url": "https://www.youtube.com/shorts/abc123",
    "title": "Crispy chickpeas",
    "description": "Roast them #snack",
    "uploader": "Cook Channel",
    "uploader_id": "@cook",
    "timestamp": 1705314600,
    "duration": 45,
    "view_count": "1200",
    "like_count": 80,
    "thumbnails": [{"url": "https://i.ytimg.com/vi/abc123/hqdefault.jpg"}, "junk"],
}

VTT = """WEBVTT

00:00:00.000 --> 00:00:02.000
Roast the chickpeas

00:00:02.000 --> 00:00:04.000
Roast the chickpeas
"""


class FakeYoutubeDL:
    """Stands in for yt_dlp.YoutubeDL; writes the files a real download would."""

    calls: list = []
    error: Exception | None = None

    def __init__(self, opts):
        self.opts = opts
        FakeYoutubeDL.calls.append(opts)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=False):
        if FakeYoutubeDL.error is not None:
            raise FakeYoutubeDL.error
        if download:
            out_dir = Path(self.opts["outtmpl"]).parent
            if self.opts.get("writesubtitles"):
                (out_dir / "abc123.en.vtt").write_text(VTT, encoding="utf-8")
            else:
                (out_dir / "abc123.mp4").write_bytes(b"\x00")
        return dict(INFO)

    def sanitize_info(self, info):
        return info


@pytest.fixture
def fake_ydl():
    FakeYoutubeDL.calls = []
    FakeYoutubeDL.error = None
    with patch("yt_dlp.YoutubeDL", FakeYoutubeDL):
        yield FakeYoutubeDL


class TestPolicy:
    """Tests for URL classification and host allow-listing."""

    def test_classify(self):
        assert classify_url_heuristic("https://www.youtube.com/shorts/x") == "youtube"
        assert classify_url_heuristic("https://youtu.be/x") == "youtube"
        assert classify_url_heuristic("https://vm.tiktok.com/x") == "tiktok"
        assert classify_url_heuristic("https://x.com/a/status/1") == "twitter"
        assert classify_url_heuristic("https://notyoutube.com/x") == "generic"

    def test_platform_from_extractor(self):
        assert platform_from_extractor("Youtube") == "youtube"
        assert platform_from_extractor("Instagram:story") == "instagram"
        assert platform_from_extractor("") == "post"

    def test_hostname_allowed(self):
        allowed = ["instagram.com"]
        assert hostname_allowed("https://www.instagram.com/reel/x", allowed)
        assert hostname_allowed("https://instagram.com/reel/x", allowed)
        assert not hostname_allowed("https://evilinstagram.com/reel/x", allowed)
        assert not hostname_allowed("ftp://instagram.com/x", allowed)
        assert hostname_allowed("https://anything.example", [])
        assert not hostname_allowed("not a url", [])


class TestNormalizeInfo:
    def test_maps_fields(self):
        meta = normalize_info(INFO)
        assert meta.item_id == "youtube-abc123"
        assert meta.caption == "Roast them #snack"
        assert meta.author_name == "Cook Channel"
        assert meta.published_at == "2024-01-15T10:30:00+00:00"
        assert meta.duration_sec == 45.0
        assert meta.views == 1200
        assert meta.comments is None
        assert meta.thumbnails == [{"url": "https://i.ytimg.com/vi/abc123/hqdefault.jpg"}]

    def test_upload_date_fallback(self):
        meta = normalize_info({"id": "x", "extractor": "tiktok", "upload_date": "20240301"})
        assert meta.platform == "tiktok"
        assert meta.published_at == "2024-03-01T00:00:00+00:00"

    def test_missing_id(self):
        with pytest.raises(ExtractionError):
            normalize_info({"title": "no id"})

    def test_meta_dict_round_trip(self, tmp_path):
        meta = normalize_info(INFO)
        meta.post_dir = tmp_path
        assert ExtractedMeta.from_dict(meta.to_dict()) == meta


class TestYtDlpExtractor:
    def test_probe_writes_nothing(self, tmp_path, fake_ydl):
        meta = YtDlpExtractor(tmp_path).probe("https://youtu.be/abc123")
        assert meta.post_id == "abc123"
        assert fake_ydl.calls[0]["skip_download"] is True
        assert list(tmp_path.iterdir()) == []

    def test_extract_downloads_video(self, tmp_path, fake_ydl):
        meta = YtDlpExtractor(tmp_path).extract(INFO["webpage_url"], ExtractOptions(download_video=True))
        assert meta.post_dir == tmp_path / "youtube-abc123"
        assert meta.video_path == meta.post_dir / "abc123.mp4"
        assert fake_ydl.calls[-1]["merge_output_format"] == "mp4"
        assert meta.transcript is None

    def test_extract_subtitles(self, tmp_path, fake_ydl):
        meta = YtDlpExtractor(tmp_path, subtitle_langs="en.*").extract(
            INFO["webpage_url"], ExtractOptions(want_transcript=True)
        )
        assert meta.video_path is None
        assert meta.transcript == "Roast the chickpeas\nRoast the chickpeas"
        assert (meta.post_dir / "transcript.txt").read_text(encoding="utf-8") == meta.transcript
        assert fake_ydl.calls[-1]["subtitleslangs"] == ["en.*"]

    def test_cookies_only_when_present(self, tmp_path, fake_ydl):
        cookies = tmp_path / "cookies.txt"
        YtDlpExtractor(tmp_path, cookies_file=cookies).probe("https://youtu.be/abc123")
        assert "cookiefile" not in fake_ydl.calls[-1]
        cookies.write_text("# Netscape HTTP Cookie File\n")
        YtDlpExtractor(tmp_path, cookies_file=cookies).probe("https://youtu.be/abc123")
        assert fake_ydl.calls[-1]["cookiefile"] == str(cookies)

    def test_download_error_becomes_extraction_error(self, tmp_path, fake_ydl):
        fake_ydl.error = DownloadError("HTTP Error 404")
        with pytest.raises(ExtractionError, match="404"):
            YtDlpExtractor(tmp_path).probe("https://youtu.be/gone")
