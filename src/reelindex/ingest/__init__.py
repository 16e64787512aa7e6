"""Ingest module: URL metadata, media and subtitle extraction via yt-dlp.

This module provides:
- Platform detection and host allow-listing
- Normalized post metadata (ExtractedMeta)
- Merged MP4 download and YouTube subtitle fetch into a per-post directory
"""

from .models import ExtractedMeta, ExtractOptions
from .policy import (
    classify_url_heuristic,
    hostname_allowed,
    platform_from_extractor,
)
from .ytdlp_runner import YtDlpExtractor, normalize_info

__all__ = [
    "ExtractedMeta",
    "ExtractOptions",
    "YtDlpExtractor",
    "classify_url_heuristic",
    "hostname_allowed",
    "normalize_info",
    "platform_from_extractor",
]
