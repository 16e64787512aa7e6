"""yt-dlp extraction adapter.

Produces normalized post metadata for a URL and, on request, the merged MP4
and platform-native subtitles inside a stable per-post directory:

    <downloads_dir>/<platform>-<post_id>/
        <post_id>.mp4
        <post_id>.<lang>.vtt
        transcript.txt
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..errors import ExtractionError
from ..text import vtt_to_text
from .models import ExtractedMeta, ExtractOptions
from .policy import platform_from_extractor

log = logging.getLogger(__name__)

DEFAULT_FORMAT = "bestvideo*+bestaudio/best"
SUBTITLE_FORMAT = "vtt/srv3/srv2/srv1/ttml/best"


class _YtDlpLogger:
    """Route yt-dlp output into our logger instead of stdout/stderr."""

    def debug(self, msg: str) -> None:
        log.debug("yt-dlp: %s", msg)

    def warning(self, msg: str) -> None:
        log.debug("yt-dlp warning: %s", msg)

    def error(self, msg: str) -> None:
        log.debug("yt-dlp error: %s", msg)


def _to_iso(timestamp: Any, upload_date: Any) -> Optional[str]:
    if timestamp:
        try:
            return datetime.fromtimestamp(float(timestamp), tz=timezone.utc).isoformat()
        except (TypeError, ValueError, OverflowError):
            pass
    text = str(upload_date or "")
    if len(text) == 8 and text.isdigit():
        return datetime(int(text[:4]), int(text[4:6]), int(text[6:8]), tzinfo=timezone.utc).isoformat()
    return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def normalize_info(info: dict[str, Any]) -> ExtractedMeta:
    """Map a yt-dlp info dict onto ExtractedMeta."""
    post_id = str(info.get("id") or "")
    if not post_id:
        raise ExtractionError("yt-dlp returned no post id")
    duration = info.get("duration")
    return ExtractedMeta(
        platform=platform_from_extractor(info.get("extractor_key") or info.get("extractor") or ""),
        url=str(info.get("webpage_url") or info.get("original_url") or ""),
        post_id=post_id,
        title=str(info.get("title") or ""),
        caption=str(info.get("description") or ""),
        author_name=info.get("uploader") or info.get("channel") or info.get("creator"),
        author_id=info.get("uploader_id") or info.get("channel_id") or info.get("creator_id"),
        published_at=_to_iso(info.get("timestamp"), info.get("upload_date")),
        duration_sec=float(duration) if duration is not None else None,
        views=_int_or_none(info.get("view_count")),
        likes=_int_or_none(info.get("like_count")),
        comments=_int_or_none(info.get("comment_count")),
        thumbnails=[dict(t) for t in info.get("thumbnails") or [] if isinstance(t, dict)],
    )


class YtDlpExtractor:
    """Extraction adapter backed by the yt_dlp Python API."""

    def __init__(
        self,
        downloads_dir: Path,
        *,
        cookies_file: Optional[Path] = None,
        subtitle_langs: str = "de.*,en.*",
        socket_timeout_s: float = 30.0,
    ):
        self.downloads_dir = Path(downloads_dir)
        self.cookies_file = Path(cookies_file) if cookies_file else None
        self.subtitle_langs = [s.strip() for s in subtitle_langs.split(",") if s.strip()]
        self.socket_timeout_s = socket_timeout_s

    def _base_opts(self) -> dict[str, Any]:
        opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "noplaylist": True,
            "logger": _YtDlpLogger(),
            "socket_timeout": self.socket_timeout_s,
        }
        if self.cookies_file and self.cookies_file.exists():
            opts["cookiefile"] = str(self.cookies_file)
        return opts

    def _run(self, url: str, opts: dict[str, Any], *, download: bool) -> dict[str, Any]:
        from yt_dlp import YoutubeDL
        from yt_dlp.utils import DownloadError

        try:
            with YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=download)
                return ydl.sanitize_info(info) if info else {}
        except DownloadError as e:
            raise ExtractionError(f"yt-dlp failed for {url}: {e}") from e

    def post_dir_for(self, meta: ExtractedMeta) -> Path:
        return self.downloads_dir / meta.item_id

    def probe(self, url: str) -> ExtractedMeta:
        """Metadata only. Nothing is written to disk."""
        info = self._run(url, {**self._base_opts(), "skip_download": True}, download=False)
        if not info:
            raise ExtractionError(f"yt-dlp returned no metadata for {url}")
        meta = normalize_info(info)
        meta.url = meta.url or url
        return meta

    def extract(self, url: str, options: Optional[ExtractOptions] = None) -> ExtractedMeta:
        options = options or ExtractOptions()
        meta = self.probe(url)
        post_dir = self.post_dir_for(meta)
        post_dir.mkdir(parents=True, exist_ok=True)
        meta.post_dir = post_dir

        if options.download_video:
            meta.video_path = self._download_video(url, meta, post_dir)

        if options.want_transcript:
            meta.transcript = self._download_subtitles(url, meta, post_dir)
            if meta.transcript:
                (post_dir / "transcript.txt").write_text(meta.transcript, encoding="utf-8")

        return meta

    def _download_video(self, url: str, meta: ExtractedMeta, post_dir: Path) -> Optional[Path]:
        opts = {
            **self._base_opts(),
            "outtmpl": str(post_dir / "%(id)s.%(ext)s"),
            "format": DEFAULT_FORMAT,
            "merge_output_format": "mp4",
            "audio_multistreams": True,
            "geo_bypass": True,
        }
        self._run(url, opts, download=True)
        path = post_dir / f"{meta.post_id}.mp4"
        if not path.exists():
            log.warning("Download for %s finished but %s is missing", url, path.name)
            return None
        return path

    def _download_subtitles(self, url: str, meta: ExtractedMeta, post_dir: Path) -> Optional[str]:
        """Platform-native subtitles. Only YouTube reliably serves them."""
        if "youtube" not in meta.platform:
            return None
        opts = {
            **self._base_opts(),
            "outtmpl": str(post_dir / "%(id)s.%(ext)s"),
            "skip_download": True,
            "writesubtitles": True,
            "writeautomaticsub": True,
            "subtitlesformat": SUBTITLE_FORMAT,
            "subtitleslangs": self.subtitle_langs,
        }
        try:
            self._run(url, opts, download=True)
        except ExtractionError as e:
            log.info("Subtitle download failed for %s: %s", url, e)
            return None

        texts = []
        for vtt in sorted(post_dir.glob(f"{meta.post_id}*.vtt")):
            text = vtt_to_text(vtt.read_text(encoding="utf-8", errors="replace"))
            if text:
                texts.append(text)
        joined = "\n".join(texts).strip()
        return joined or None
