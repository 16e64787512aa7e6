"""URL classification and host policy."""

from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import urlparse


_HOST_PLATFORMS = (
    ("youtube.com", "youtube"),
    ("youtu.be", "youtube"),
    ("tiktok.com", "tiktok"),
    ("instagram.com", "instagram"),
    ("facebook.com", "facebook"),
    ("fb.watch", "facebook"),
    ("twitter.com", "twitter"),
    ("x.com", "twitter"),
)


def _hostname(url: str) -> Optional[str]:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def classify_url_heuristic(url: str) -> str:
    """Guess the platform from the hostname (instant, no network).

    The authoritative value comes from yt-dlp's extractor key; this is only
    used for labels before extraction has run. Returns "generic" when unknown.
    """
    host = _hostname(url) or ""
    for suffix, platform in _HOST_PLATFORMS:
        if host == suffix or host.endswith("." + suffix):
            return platform
    return "generic"


def platform_from_extractor(extractor_key: str) -> str:
    """Map a yt-dlp extractor key to a platform slug.

    "Youtube" -> "youtube", "TikTok" -> "tiktok", "Instagram:story" -> "instagram".
    """
    slug = (extractor_key or "").strip().lower().split(":")[0]
    return slug or "post"


def hostname_allowed(url: str, allowed_hosts: Iterable[str]) -> bool:
    """True when `url`'s host equals or is a subdomain of an allowed host.

    An empty allow-list accepts every well-formed http(s) URL.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    if not host:
        return False
    allowed = [h.strip().lower() for h in allowed_hosts if h and h.strip()]
    if not allowed:
        return True
    return any(host == h or host.endswith("." + h) for h in allowed)
