"""Embedding provider over an OpenAI-compatible /embeddings endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ..errors import EmbeddingError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingConfig:
    base_url: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-small"
    dim: int = 1536
    api_key: Optional[str] = None
    timeout_s: float = 60.0

    @classmethod
    def from_profile(
        cls,
        embedding_cfg: Dict[str, Any],
        *,
        default_base_url: str,
        api_key: Optional[str] = None,
    ) -> "EmbeddingConfig":
        return cls(
            base_url=str(embedding_cfg.get("base_url") or default_base_url).rstrip("/"),
            model=str(embedding_cfg.get("model") or "text-embedding-3-small"),
            dim=int(embedding_cfg.get("dim", 1536)),
            api_key=api_key,
            timeout_s=float(embedding_cfg.get("timeout_s", 60)),
        )


class EmbeddingClient:
    def __init__(self, cfg: EmbeddingConfig, *, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self._session = session or requests.Session()

    @property
    def model(self) -> str:
        return self.cfg.model

    @property
    def dim(self) -> int:
        return self.cfg.dim

    def embed(self, text: str) -> Optional[List[float]]:
        """Embed `text`. None for empty input or an empty vector."""
        if not text or not text.strip():
            return None

        headers = {"Content-Type": "application/json"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"
        try:
            resp = self._session.post(
                f"{self.cfg.base_url}/embeddings",
                headers=headers,
                json={"model": self.cfg.model, "input": text},
                timeout=self.cfg.timeout_s,
            )
        except requests.RequestException as e:
            raise EmbeddingError(f"embed request failed: {e}") from e
        if resp.status_code != 200:
            raise EmbeddingError(f"embed HTTP {resp.status_code}: {resp.text[:500]}")

        try:
            vector = resp.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingError(f"Invalid embedding response: {e}") from e
        if not isinstance(vector, list) or not vector:
            return None
        try:
            vector = [float(x) for x in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError("embedding contains non-numeric values") from e

        if len(vector) != self.cfg.dim:
            log.warning("Embedding model %s returned %d dims, expected %d", self.cfg.model, len(vector), self.cfg.dim)
        return vector
