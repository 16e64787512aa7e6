"""Vector search over stored item embeddings.

Vectors live as float32 BLOBs in `items.embedding`; ranking is exact L2
distance computed with numpy over the filtered rows.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import numpy as np

from .db import Database
from .errors import EmbeddingError
from .persistence import blob_to_embedding, build_summary

log = logging.getLogger(__name__)


def l2_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Euclidean distance from `query` to every row of `matrix`."""
    return np.linalg.norm(matrix - query[np.newaxis, :], axis=1)


def _loads(body: Optional[str]) -> Optional[Dict[str, Any]]:
    if not body:
        return None
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class ItemSearch:
    def __init__(self, db: Database, embedder: Any, *, embedding_dim: int = 1536) -> None:
        self.db = db
        self.embedder = embedder
        self.embedding_dim = int(embedding_dim)

    def search(
        self,
        q: str,
        *,
        k: int = 10,
        is_recipe: Optional[bool] = None,
        platform: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Nearest items to the query text, closest first.

        Raises:
            ValueError: empty query
            EmbeddingError: the query could not be embedded
        """
        if not q or not q.strip():
            raise ValueError("Missing q")
        k = int(k) if k else 10

        vector = self.embedder.embed(q)
        if not vector:
            raise EmbeddingError("Embedding failed")
        query = np.asarray(vector, dtype=np.float32)
        if query.shape[0] != self.embedding_dim:
            raise EmbeddingError(f"Query embedding has {query.shape[0]} dims, index holds {self.embedding_dim}")

        clauses = ["embedding IS NOT NULL"]
        params: List[Any] = []
        if is_recipe is not None:
            clauses.append("is_recipe = ?")
            params.append(1 if is_recipe else 0)
        if platform:
            clauses.append("platform = ?")
            params.append(platform)
        if topic:
            clauses.append("EXISTS (SELECT 1 FROM json_each(items.topics) WHERE LOWER(value) = ?)")
            params.append(topic.lower())

        with self.db.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, title, platform, url, topics, is_recipe, author_name,
                       published_at, created_at, embedding
                FROM items
                WHERE {" AND ".join(clauses)}
                """,
                params,
            ).fetchall()

            rows = [r for r in rows if len(r["embedding"]) == self.embedding_dim * 4]
            if not rows:
                return []

            matrix = np.stack([blob_to_embedding(r["embedding"]) for r in rows])
            distances = l2_distances(matrix, query)
            order = np.argsort(distances, kind="stable")[:k]

            results = []
            for idx in order:
                row = rows[int(idx)]
                results.append({
                    "id": row["id"],
                    "title": row["title"],
                    "platform": row["platform"],
                    "url": row["url"],
                    "topics": json.loads(row["topics"] or "[]"),
                    "is_recipe": bool(row["is_recipe"]),
                    "author_name": row["author_name"],
                    "published_at": row["published_at"],
                    "created_at": row["created_at"],
                    "distance": float(distances[idx]),
                    "snippet": self._snippet(conn, row),
                })
        return results

    @staticmethod
    def _snippet(conn: Any, row: Any) -> str:
        bodies = {
            r["kind"]: _loads(r["body"])
            for r in conn.execute("SELECT kind, body FROM item_json WHERE item_id = ?", (row["id"],))
        }
        meta = bodies.get("meta") or {}
        return build_summary(
            analysis=bodies.get("analysis"),
            recipe=bodies.get("recipe"),
            caption=meta.get("caption"),
            title=row["title"],
            url=row["url"],
        )

