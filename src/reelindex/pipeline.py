"""URL -> metadata, transcript, analysis, recipe and embedding.

Stages run sequentially for one URL:

    cache check -> extract -> transcript fallback -> analysis (video, then
    text fallback) -> embedding -> artifacts + cache write

Only extraction is fatal. Transcription, analysis and embedding failures are
logged and leave their part of the result empty.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .ai.schemas import Analysis, Recipe
from .cache import ContentCache
from .errors import AnalysisError, EmbeddingError, TranscriptionError
from .ingest.models import ExtractedMeta, ExtractOptions
from .profile import PipelineSettings
from .text import build_embedding_text, clean_transcript
from .utils import write_json

log = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    meta: ExtractedMeta
    analysis: Optional[Dict[str, Any]] = None
    recipe: Optional[Dict[str, Any]] = None
    embedding: Optional[List[float]] = None
    from_cache: bool = False

    @property
    def item_id(self) -> str:
        return self.meta.item_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "analysis": self.analysis,
            "recipe": self.recipe,
            "embedding": self.embedding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, from_cache: bool = False) -> "PipelineResult":
        meta = data.get("meta")
        if not isinstance(meta, dict):
            raise ValueError("pipeline result has no meta")
        embedding = data.get("embedding")
        return cls(
            meta=ExtractedMeta.from_dict(meta),
            analysis=data.get("analysis"),
            recipe=data.get("recipe"),
            embedding=[float(x) for x in embedding] if embedding else None,
            from_cache=from_cache,
        )


class PipelineOrchestrator:
    """Runs the content pipeline with injected providers.

    `transcriber`, `video_analyzer`, `text_analyzer`, `embedder` and `cache`
    may each be None; the corresponding stage is then skipped.
    """

    def __init__(
        self,
        *,
        extractor: Any,
        transcriber: Any = None,
        video_analyzer: Any = None,
        text_analyzer: Any = None,
        embedder: Any = None,
        cache: Optional[ContentCache] = None,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self.extractor = extractor
        self.transcriber = transcriber
        self.video_analyzer = video_analyzer
        self.text_analyzer = text_analyzer
        self.embedder = embedder
        self.cache = cache
        self.settings = settings or PipelineSettings()

    def run(self, url: str, *, allow_inference: bool = True, refresh: bool = False) -> PipelineResult:
        if not refresh:
            cached = self._read_cache(url)
            if cached is not None:
                log.info("Cache hit for %s", url)
                return cached

        options = ExtractOptions(
            download_video=self.settings.download_video,
            want_transcript=self.settings.want_transcript,
        )
        meta = self.extractor.extract(url, options)
        log.info("Extracted %s (%s)", meta.item_id, meta.title or "untitled")

        self._transcript_fallback(meta)
        analysis, recipe = self._analyze(meta, allow_inference)

        result = PipelineResult(
            meta=meta,
            analysis=analysis.to_dict() if analysis else None,
            recipe=recipe.to_dict() if recipe else None,
        )
        result.embedding = self._embed(result)

        self._write_artifacts(result)
        self._write_cache(url, result)
        return result

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _read_cache(self, url: str) -> Optional[PipelineResult]:
        if self.cache is None:
            return None
        payload = self.cache.read(url)
        if payload is None:
            return None
        try:
            return PipelineResult.from_dict(payload, from_cache=True)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Cached result for %s is unusable: %s", url, e)
            return None

    def _write_cache(self, url: str, result: PipelineResult) -> None:
        if self.cache is None:
            return
        try:
            self.cache.write(url, result.to_dict())
        except sqlite3.Error as e:
            log.warning("Cache write failed for %s: %s", url, e)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _transcript_fallback(self, meta: ExtractedMeta) -> None:
        if not self.settings.want_transcript or meta.transcript or self.transcriber is None:
            return
        if not meta.video_path or not meta.video_path.exists():
            return
        try:
            raw = self.transcriber.transcribe(meta.video_path)
        except TranscriptionError as e:
            log.warning("Transcription failed for %s: %s", meta.item_id, e)
            return
        cleaned = clean_transcript(raw, self.settings.transcript_max_chars)
        if not cleaned:
            return
        meta.transcript = cleaned
        if meta.post_dir:
            (meta.post_dir / "transcript.txt").write_text(cleaned, encoding="utf-8")

    def _analyze(self, meta: ExtractedMeta, allow_inference: bool) -> Tuple[Optional[Analysis], Optional[Recipe]]:
        analysis: Optional[Analysis] = None
        recipe: Optional[Recipe] = None

        if self.video_analyzer is not None and self.settings.use_video_analyzer and meta.video_path:
            analysis, recipe = self._analyze_video(meta, allow_inference)

        if analysis is None:
            analysis = self._classify_text(meta)
            if analysis is not None and analysis.is_recipe:
                recipe = self._extract_recipe_text(meta, allow_inference)

        if recipe is not None:
            recipe.normalize(platform=meta.platform, url=meta.url, post_id=meta.post_id)
            recipe.apply_inference_policy(
                allow_inference=allow_inference,
                ceiling=self.settings.inference_confidence_ceiling,
            )
        return analysis, recipe

    def _analyze_video(self, meta: ExtractedMeta, allow_inference: bool) -> Tuple[Optional[Analysis], Optional[Recipe]]:
        media = None
        try:
            try:
                media = self.video_analyzer.prepare_media(meta.video_path)
                analysis = self.video_analyzer.analyze_general(media, meta)
            except AnalysisError as e:
                log.warning("Video analysis failed for %s, using text fallback: %s", meta.item_id, e)
                return None, None

            if not analysis.is_recipe:
                return analysis, None
            try:
                recipe = self.video_analyzer.analyze_specialized(media, meta, allow_inference)
            except AnalysisError as e:
                log.warning("Video recipe pass failed for %s: %s", meta.item_id, e)
                recipe = self._extract_recipe_text(meta, allow_inference)
            return analysis, recipe
        finally:
            if media is not None:
                self.video_analyzer.release_media(media)

    def _classify_text(self, meta: ExtractedMeta) -> Optional[Analysis]:
        if self.text_analyzer is None:
            return None
        try:
            classification = self.text_analyzer.classify(meta.title, meta.caption, meta.transcript or "")
        except AnalysisError as e:
            log.warning("Text classification failed for %s: %s", meta.item_id, e)
            return None
        return classification.to_analysis()

    def _extract_recipe_text(self, meta: ExtractedMeta, allow_inference: bool) -> Optional[Recipe]:
        if self.text_analyzer is None:
            return None
        try:
            return self.text_analyzer.extract_recipe(meta, allow_inference)
        except AnalysisError as e:
            log.warning("Text recipe extraction failed for %s: %s", meta.item_id, e)
            return None

    def _embed(self, result: PipelineResult) -> Optional[List[float]]:
        if self.embedder is None:
            return None
        meta = result.meta
        text = build_embedding_text(
            title=meta.title,
            caption=meta.caption,
            transcript=meta.transcript,
            analysis=result.analysis,
            recipe=result.recipe,
        )
        try:
            return self.embedder.embed(text)
        except EmbeddingError as e:
            log.warning("Embedding failed for %s: %s", meta.item_id, e)
            return None

    def _write_artifacts(self, result: PipelineResult) -> None:
        post_dir = result.meta.post_dir
        if not post_dir:
            return
        write_json(post_dir / "meta.json", result.meta.to_dict())
        if result.analysis is not None:
            write_json(post_dir / "analysis.json", result.analysis)
        if result.recipe is not None:
            write_json(post_dir / "recipe.json", result.recipe)
        if result.embedding:
            write_json(
                post_dir / "embedding.json",
                {
                    "model": getattr(self.embedder, "model", None),
                    "dims": len(result.embedding),
                    "vector": [round(x, 6) for x in result.embedding],
                },
            )
