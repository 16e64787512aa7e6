from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from reelindex.db import Database
from reelindex.ingest.models import ExtractedMeta
from reelindex.queue import LeaseManager


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "reelindex.sqlite")


@pytest.fixture
def manager(db: Database, clock: FakeClock) -> LeaseManager:
    return LeaseManager(db, max_attempts=3, lease_seconds=120, clock=clock)


def make_meta(tmp_path: Path | None = None, **overrides) -> ExtractedMeta:
    fields = {
        "platform": "youtube",
        "url": "https://www.youtube.com/shorts/abc123",
        "post_id": "abc123",
        "title": "Crispy chickpeas",
        "caption": "Roast chickpeas at 200C for 25 minutes #snack https://example.com/x",
        "author_name": "Cook Channel",
        "duration_sec": 45.0,
        "thumbnails": [
            {"url": "https://i.ytimg.com/vi/abc123/default.jpg", "width": 120, "height": 90},
            {"url": "https://i.ytimg.com/vi/abc123/maxresdefault.jpg"},
        ],
    }
    fields.update(overrides)
    meta = ExtractedMeta(**fields)
    if tmp_path is not None and meta.post_dir is None:
        meta.post_dir = tmp_path / "downloads" / meta.item_id
        meta.post_dir.mkdir(parents=True, exist_ok=True)
    return meta
