"""Data models for URL ingest."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class ExtractOptions:
    """What the extractor should fetch besides metadata."""

    download_video: bool = False
    want_transcript: bool = False


@dataclass
class ExtractedMeta:
    """Normalized post metadata from yt-dlp.

    `platform` is the lowercased extractor key (youtube, tiktok, instagram...),
    `post_id` the platform's own id. Together they form the item identity.
    """

    platform: str
    url: str
    post_id: str
    title: str = ""
    caption: str = ""
    author_name: Optional[str] = None
    author_id: Optional[str] = None
    published_at: Optional[str] = None
    duration_sec: Optional[float] = None

    views: Optional[int] = None
    likes: Optional[int] = None
    comments: Optional[int] = None

    # Raw yt-dlp thumbnail entries (url, width, height, resolution, id...)
    thumbnails: list[dict[str, Any]] = field(default_factory=list)

    transcript: Optional[str] = None

    # Filesystem
    post_dir: Optional[Path] = None
    video_path: Optional[Path] = None

    @property
    def item_id(self) -> str:
        return f"{self.platform}-{self.post_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "url": self.url,
            "post_id": self.post_id,
            "title": self.title,
            "caption": self.caption,
            "author": {"name": self.author_name, "id": self.author_id},
            "published_at": self.published_at,
            "stats": {"views": self.views, "likes": self.likes, "comments": self.comments},
            "duration_sec": self.duration_sec,
            "thumbnails": list(self.thumbnails),
            "transcript": self.transcript,
            "paths": {
                "dir": str(self.post_dir) if self.post_dir else None,
                "video": str(self.video_path) if self.video_path else None,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedMeta":
        author = data.get("author") or {}
        stats = data.get("stats") or {}
        paths = data.get("paths") or {}
        post_dir = paths.get("dir")
        video = paths.get("video")
        duration = data.get("duration_sec")
        return cls(
            platform=str(data.get("platform") or ""),
            url=str(data.get("url") or ""),
            post_id=str(data.get("post_id") or ""),
            title=str(data.get("title") or ""),
            caption=str(data.get("caption") or ""),
            author_name=author.get("name"),
            author_id=author.get("id"),
            published_at=data.get("published_at"),
            duration_sec=float(duration) if duration is not None else None,
            views=stats.get("views"),
            likes=stats.get("likes"),
            comments=stats.get("comments"),
            thumbnails=list(data.get("thumbnails") or []),
            transcript=data.get("transcript"),
            post_dir=Path(post_dir) if post_dir else None,
            video_path=Path(video) if video else None,
        )
