"""Write pipeline results into the items / item_json tables.

Two phases:

    A. one BEGIN IMMEDIATE transaction: the item row plus its meta, analysis
       and recipe artifacts. Any sqlite error rolls all of it back.
    B. a separate statement for the embedding BLOB.

A crash between A and B leaves an item without a vector. Nothing repairs that
automatically; `ReelIndexService.reconcile_embeddings()` re-enqueues such items.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .db import Database
from .errors import PersistenceError
from .utils import utc_iso

if TYPE_CHECKING:
    from .pipeline import PipelineResult

log = logging.getLogger(__name__)

_RESOLUTION_RE = re.compile(r"^(\d+)x(\d+)$")


# YouTube's named variants, best first
_NAMED_THUMBS = (("maxresdefault", 3), ("hq720", 2), ("/hqdefault.", 1))


def _thumb_score(thumb: Dict[str, Any]) -> Tuple[int, float]:
    """(named tier, pixel area minus the webp penalty)."""
    url = str(thumb.get("url") or "")
    tier = next((rank for marker, rank in _NAMED_THUMBS if marker in url), 0)
    area = 0.0
    res = _RESOLUTION_RE.match(str(thumb.get("resolution") or ""))
    if res:
        area = float(int(res.group(1)) * int(res.group(2)))
    elif thumb.get("width") and thumb.get("height"):
        area = float(thumb["width"]) * float(thumb["height"])
    if url.endswith(".webp"):
        area -= 5
    return tier, area


def pick_best_thumb(thumbnails: Sequence[Dict[str, Any]]) -> Optional[str]:
    """Highest-scoring thumbnail URL, or None.

    maxresdefault > hq720 > hqdefault > largest width x height; webp loses ties.
    """
    candidates = [t for t in thumbnails or [] if isinstance(t, dict) and t.get("url")]
    if not candidates:
        return None
    return str(max(candidates, key=_thumb_score)["url"])


def build_summary(
    *,
    analysis: Optional[Dict[str, Any]],
    recipe: Optional[Dict[str, Any]],
    caption: Optional[str],
    title: Optional[str],
    url: str,
) -> str:
    if analysis and analysis.get("summary"):
        return str(analysis["summary"])
    if recipe and recipe.get("title"):
        return f"Recipe: {recipe['title']}"
    if caption:
        return caption[:200]
    return title or url


def embedding_to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def blob_to_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class PersistenceCoordinator:
    def __init__(self, db: Database, *, embedding_dim: int = 1536) -> None:
        self.db = db
        self.embedding_dim = int(embedding_dim)

    def upsert(self, result: "PipelineResult") -> str:
        """Persist `result` and return its item id.

        Raises PersistenceError when the relational phase fails.
        """
        meta = result.meta
        item_id = meta.item_id
        analysis = result.analysis
        recipe = result.recipe

        topics: List[str] = list(analysis.get("topics") or []) if analysis else []
        is_recipe = bool(analysis and analysis.get("content_type") == "recipe")
        summary = build_summary(
            analysis=analysis,
            recipe=recipe,
            caption=meta.caption,
            title=meta.title,
            url=meta.url,
        )
        now = utc_iso()

        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO items (
                        id, platform, url, title, author_name, published_at, topics,
                        is_recipe, storage_dir, thumb_url, summary, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        platform = excluded.platform,
                        url = excluded.url,
                        title = excluded.title,
                        author_name = excluded.author_name,
                        published_at = excluded.published_at,
                        topics = excluded.topics,
                        is_recipe = excluded.is_recipe,
                        storage_dir = excluded.storage_dir,
                        thumb_url = excluded.thumb_url,
                        summary = excluded.summary,
                        updated_at = excluded.updated_at
                    """,
                    (
                        item_id,
                        meta.platform,
                        meta.url,
                        meta.title or None,
                        meta.author_name,
                        meta.published_at,
                        json.dumps(topics, ensure_ascii=False),
                        1 if is_recipe else 0,
                        str(meta.post_dir) if meta.post_dir else None,
                        pick_best_thumb(meta.thumbnails),
                        summary,
                        now,
                        now,
                    ),
                )
                self._put_json(conn, item_id, "meta", meta.to_dict(), now)
                if analysis is not None:
                    self._put_json(conn, item_id, "analysis", analysis, now)
                if recipe is not None:
                    self._put_json(conn, item_id, "recipe", recipe, now)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to persist item {item_id}: {e}") from e

        self._write_embedding(item_id, result.embedding)
        return item_id

    @staticmethod
    def _put_json(conn: sqlite3.Connection, item_id: str, kind: str, body: Any, now: str) -> None:
        conn.execute(
            """
            INSERT INTO item_json (item_id, kind, body, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(item_id, kind) DO UPDATE SET body = excluded.body, updated_at = excluded.updated_at
            """,
            (item_id, kind, json.dumps(body, ensure_ascii=False), now),
        )

    def _write_embedding(self, item_id: str, vector: Optional[Sequence[float]]) -> bool:
        if not vector:
            return False
        if len(vector) != self.embedding_dim:
            log.warning(
                "Skipping embedding for %s: %d dims, column holds %d",
                item_id, len(vector), self.embedding_dim,
            )
            return False
        try:
            with self.db.connect() as conn:
                conn.execute(
                    "UPDATE items SET embedding = ? WHERE id = ?",
                    (embedding_to_blob(vector), item_id),
                )
        except sqlite3.Error as e:
            log.error("Embedding write failed for %s: %s", item_id, e)
            return False
        return True
