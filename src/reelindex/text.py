"""Text cleanup and composition helpers for captions, transcripts and embeddings."""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional

CAPTION_MAX_CHARS = 1500
TRANSCRIPT_MAX_CHARS = 3500

_URL_RE = re.compile(r"https?://\S+")
_WS_RUN_RE = re.compile(r"\s{2,}")

_VTT_HEADER_RE = re.compile(r"^WEBVTT.*$", re.IGNORECASE | re.MULTILINE)
_CUE_NUMBER_RE = re.compile(r"^\d+\s*$", re.MULTILINE)
_CUE_TIMING_RE = re.compile(r"^.*-->.*$", re.MULTILINE)
_INLINE_TS_RE = re.compile(r"<\d{2}:\d{2}:\d{2}\.\d{3}>")
_TAG_RE = re.compile(r"</?[^>]+>")
# YouTube auto-subs carry these header lines after WEBVTT
_VTT_META_RE = re.compile(r"^(Kind|Language): .*$", re.MULTILINE)


def clip(s: Optional[str], n: int = 4000) -> str:
    if not s:
        return ""
    s = str(s)
    return s[:n] if len(s) > n else s


def clean_caption(raw: Optional[str], max_chars: int = CAPTION_MAX_CHARS) -> str:
    """Strip URLs and collapse runs of whitespace."""
    if not raw:
        return ""
    c = _URL_RE.sub("", str(raw))
    c = _WS_RUN_RE.sub(" ", c).strip()
    return clip(c, max_chars)


def _dedupe_consecutive(lines: Iterable[str]) -> list[str]:
    out: list[str] = []
    for line in lines:
        if not out or out[-1] != line:
            out.append(line)
    return out


def clean_transcript(raw: Optional[str], max_chars: int = TRANSCRIPT_MAX_CHARS) -> str:
    """Normalize a subtitle dump or ASR output into plain lines.

    Removes WEBVTT headers, cue numbers, timing lines, inline timestamps and
    markup, then drops blank lines and consecutive duplicates (auto-generated
    YouTube captions repeat each line as the cue scrolls).
    """
    if not raw:
        return ""
    t = str(raw).replace("\r", "")
    t = _VTT_HEADER_RE.sub("", t)
    t = _VTT_META_RE.sub("", t)
    t = _CUE_TIMING_RE.sub("", t)
    t = _CUE_NUMBER_RE.sub("", t)
    t = _INLINE_TS_RE.sub("", t)
    t = _TAG_RE.sub("", t)
    lines = [" ".join(line.split()) for line in t.split("\n")]
    lines = _dedupe_consecutive(line for line in lines if line)
    return clip("\n".join(lines), max_chars).strip()


def vtt_to_text(vtt: str) -> str:
    """Quick WebVTT -> text: keep only the cue payload lines."""
    kept = []
    for line in vtt.replace("\r", "").split("\n"):
        if not line or line.isdigit() or "-->" in line or line.startswith("WEBVTT"):
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def _as_list(value: Any) -> list[str]:
    if not value:
        return []
    return [str(v) for v in value if v not in (None, "")]


def build_analysis_text(analysis: Optional[dict[str, Any]]) -> str:
    """Render an analysis as labeled lines for the embedding blob."""
    if not analysis:
        return ""
    parts: list[str] = []
    summary = analysis.get("summary")
    if summary:
        parts.append(str(summary))
    key_points = _as_list(analysis.get("key_points"))
    if key_points:
        parts.append("key points: " + "; ".join(key_points))
    topics = _as_list(analysis.get("topics"))
    if topics:
        parts.append("topics: " + ", ".join(topics))
    entities = _as_list(analysis.get("entities"))
    if entities:
        parts.append("entities: " + ", ".join(entities))
    screen = _as_list(analysis.get("screen_text"))
    if screen:
        parts.append("screen: " + " / ".join(screen))
    return "\n".join(parts)


def _format_quantity(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_recipe_text(recipe: Optional[dict[str, Any]]) -> str:
    if not recipe:
        return ""
    parts = ["recipe title: " + str(recipe.get("title") or "")]
    ingredients = []
    for ing in recipe.get("ingredients") or []:
        bits = [ing.get("quantity"), ing.get("unit"), ing.get("name"), ing.get("notes")]
        rendered = " ".join(_format_quantity(b) for b in bits if b not in (None, ""))
        if rendered:
            ingredients.append(rendered)
    if ingredients:
        parts.append("ingredients: " + "; ".join(ingredients))
    steps = [str(s.get("instruction")) for s in recipe.get("steps") or [] if s.get("instruction")]
    if steps:
        parts.append("steps: " + " ".join(steps))
    tags = _as_list(recipe.get("tags"))
    if tags:
        parts.append("tags: " + ", ".join(tags))
    return "\n".join(parts)


def build_embedding_text(
    *,
    title: Optional[str],
    caption: Optional[str],
    transcript: Optional[str],
    analysis: Optional[dict[str, Any]] = None,
    recipe: Optional[dict[str, Any]] = None,
) -> str:
    """Compose the text that represents an item in the vector index.

    Order is fixed: title, cleaned caption, cleaned transcript, analysis lines,
    recipe lines. Empty sections are skipped.
    """
    blocks = [
        title or "",
        clean_caption(caption),
        clean_transcript(transcript),
        build_analysis_text(analysis),
        build_recipe_text(recipe),
    ]
    return "\n".join(b for b in blocks if b).strip()
