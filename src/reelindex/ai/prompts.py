"""Prompt builders for the video and text analyzers."""

from __future__ import annotations

from ..ingest.models import ExtractedMeta
from ..text import clean_caption, clean_transcript, clip
from .schemas import CONTENT_TYPES

_CONTENT_TYPES_TEXT = "|".join(CONTENT_TYPES)

ANALYSIS_SCHEMA_TEXT = f"""{{
  "content_type":"{_CONTENT_TYPES_TEXT}",
  "topics":["string"],
  "summary":"string",
  "key_points":["string"],
  "entities":["string"],
  "screen_text":["string"],
  "links":["string"]
}}"""

CLASSIFIER_SCHEMA_TEXT = (
    f'{{"content_type":"{_CONTENT_TYPES_TEXT}","topics":["string"],"confidence":0.0}}'
)

RECIPE_SCHEMA_TEXT = """{
  "recipe_id":"string",
  "source":{"platform":"string","url":"string","post_id":"string"},
  "title":"string",
  "author":"string|null",
  "servings":"number|null",
  "total_time_minutes":"number|null",
  "ingredients":[{"name":"string","quantity":"number|null","unit":"string|null","notes":"string|null"}],
  "steps":[{"index":"number","instruction":"string","timer_minutes":"number|null"}],
  "tags":["string"],
  "confidence":{"ingredients":"number","steps":"number","servings":"number","time":"number"},
  "provenance":{
    "servings":{"source":"caption|transcript|ocr|model|null","confidence":"number|null"},
    "total_time_minutes":{"source":"caption|transcript|ocr|model|null","confidence":"number|null"}
  },
  "flags":{"has_inferred_values":"boolean"}
}"""

GENERAL_SYSTEM_PROMPT = f"""You analyze short social videos (reels, shorts, tiktoks).
Return ONLY valid JSON with this schema:
{ANALYSIS_SCHEMA_TEXT}

Rules:
- Output JSON only. No prose, no code fences.
- Choose ONE content_type from the list exactly as written.
- Use spoken audio, on-screen text and visuals. Avoid speculation.
- topics: 3-8 short lowercase keywords, no duplicates.
- summary: 1-3 sentences with the goal and main takeaway.
- key_points: every concrete item shown or stated, in order, one idea per item.
- screen_text: up to 10 important overlays, verbatim.
- Arrays may be empty; strings must not be blank."""

CLASSIFIER_SYSTEM_PROMPT = "You are a content classifier. Output ONLY valid JSON per instructions."

RECIPE_TEXT_SYSTEM_PROMPT = "You extract recipes. Output ONLY valid JSON per schema."


def inference_rule(allow_inference: bool, ceiling: float = 0.7) -> str:
    if allow_inference:
        return (
            "You MAY infer missing values; set provenance.source='model' and "
            f"confidence <= {ceiling}; flags.has_inferred_values=true."
        )
    return "Do NOT guess; unknowns stay null; flags.has_inferred_values=false."


def recipe_video_system_prompt(allow_inference: bool, ceiling: float = 0.7) -> str:
    return f"""You extract recipes from social videos and return ONLY valid JSON:
{RECIPE_SCHEMA_TEXT}

Rules:
- Output JSON only. Use spoken audio and on-screen text; avoid speculation.
- Parse explicit quantities and units (g, ml, tsp, tbsp, cup, piece); otherwise null.
- Steps are imperative, indexed from 1. timer_minutes only when stated or shown.
- tags: cuisine, course, dietary constraints, techniques, main ingredients.
- Confidence values are in [0, 1].
- {inference_rule(allow_inference, ceiling)}"""


def build_post_context(meta: ExtractedMeta) -> str:
    return (
        f"Platform: {meta.platform}\n"
        f"URL: {meta.url}\n"
        f"Post ID: {meta.post_id}\n"
        f"Title: {clip(meta.title, 200)}\n\n"
        "Return JSON only."
    )


def build_classifier_prompt(*, title: str, caption: str, transcript: str) -> str:
    return f"""Classify this social video post. Output ONLY this JSON:
{CLASSIFIER_SCHEMA_TEXT}

Title:
{clip(title, 200)}

Caption:
{clip(caption, 1200)}

Transcript (may be empty):
{clip(transcript, 2000)}

Rules:
- recipe only if ingredients or clear cooking steps.
- topics: short lowercase keywords.
- confidence in [0,1]."""


def build_recipe_prompt(meta: ExtractedMeta, *, allow_inference: bool, ceiling: float = 0.7) -> str:
    return f"""You extract recipes from social video posts. Output ONLY valid JSON matching this schema:
{RECIPE_SCHEMA_TEXT}

Inputs:
- Platform: {meta.platform}
- URL: {meta.url}
- Post ID: {meta.post_id}
- Title: {clip(meta.title, 200)}
- Author: {meta.author_name or ""}

Caption:
{clean_caption(meta.caption, 1500)}

Transcript (cleaned):
{clean_transcript(meta.transcript, 3000)}

Requirements:
1) Normalize units (g, ml, tsp, tbsp, cup). Merge duplicates.
2) Number steps; timer_minutes only if explicit.
3) {inference_rule(allow_inference, ceiling)}
4) confidence.* in [0,1]."""


def reask_message(error: str) -> str:
    """Follow-up turn sent when a response did not match the schema."""
    return (
        "Your previous answer was not valid for the required schema "
        f"({clip(error, 300)}). Reply again with ONLY the corrected JSON object."
    )
