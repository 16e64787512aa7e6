"""Text-only fallback analyzer: classify a post and extract a recipe from its words."""

from __future__ import annotations

import logging

from ..ingest.models import ExtractedMeta
from ..text import clean_caption, clean_transcript
from .llm_client import LLMClient
from .prompts import (
    CLASSIFIER_SYSTEM_PROMPT,
    RECIPE_TEXT_SYSTEM_PROMPT,
    build_classifier_prompt,
    build_recipe_prompt,
)
from .schemas import Classification, Recipe

log = logging.getLogger(__name__)


class TextAnalyzer:
    def __init__(self, client: LLMClient, *, inference_ceiling: float = 0.7) -> None:
        self.client = client
        self.inference_ceiling = inference_ceiling

    def classify(self, title: str, caption: str, transcript: str) -> Classification:
        prompt = build_classifier_prompt(
            title=title or "",
            caption=clean_caption(caption),
            transcript=clean_transcript(transcript),
        )
        result = self.client.complete_validated(prompt, Classification.from_dict, system_prompt=CLASSIFIER_SYSTEM_PROMPT)
        log.debug("Classified as %s (topics=%s)", result.content_type, result.topics)
        return result

    def extract_recipe(self, meta: ExtractedMeta, allow_inference: bool) -> Recipe:
        prompt = build_recipe_prompt(meta, allow_inference=allow_inference, ceiling=self.inference_ceiling)
        return self.client.complete_validated(prompt, Recipe.from_dict, system_prompt=RECIPE_TEXT_SYSTEM_PROMPT)
