"""Tests for caption/transcript cleanup and embedding text composition."""

from __future__ import annotations

from reelindex.text import (
    build_analysis_text,
    build_embedding_text,
    build_recipe_text,
    clean_caption,
    clean_transcript,
    clip,
    vtt_to_text,
)

VTT = """WEBVTT
Kind: captions
Language: en

1
00:00:00.000 --> 00:00:02.000
<c>Preheat</c> the oven

2
00:00:01.500 --> 00:00:03.000
Preheat the oven

3
00:00:03.000 --> 00:00:05.000
to<00:00:03.500> 200 degrees
"""


class TestCleanCaption:
    def test_strips_urls_and_whitespace(self):
        assert clean_caption("Try this   https://t.co/xyz  now") == "Try this now"

    def test_empty(self):
        assert clean_caption(None) == ""
        assert clean_caption("") == ""

    def test_clipped(self):
        assert len(clean_caption("a" * 2000)) == 1500
        assert clean_caption("abcdef", max_chars=3) == "abc"


class TestCleanTranscript:
    def test_removes_vtt_noise_and_dedupes(self):
        assert clean_transcript(VTT) == "Preheat the oven\nto 200 degrees"

    def test_plain_text_passthrough(self):
        assert clean_transcript("hello world") == "hello world"

    def test_keeps_non_header_colon_lines(self):
        assert clean_transcript("Note: use butter") == "Note: use butter"

    def test_clipped(self):
        assert len(clean_transcript("word " * 2000)) <= 3500


def test_vtt_to_text_keeps_payload_lines():
    text = vtt_to_text("WEBVTT\n\n1\n00:00:00.000 --> 00:00:01.000\nhello\n")
    assert text == "hello"


def test_clip():
    assert clip(None) == ""
    assert clip("abc", 2) == "ab"


class TestEmbeddingText:
    def test_order_title_caption_transcript_analysis_recipe(self):
        analysis = {
            "summary": "Quick roasted chickpeas.",
            "key_points": ["roast 25 min"],
            "topics": ["snack", "vegan"],
            "entities": ["chickpeas"],
            "screen_text": ["200C"],
        }
        recipe = {
            "title": "Crispy chickpeas",
            "ingredients": [{"name": "chickpeas", "quantity": 1.0, "unit": "can"}],
            "steps": [{"index": 1, "instruction": "Roast."}],
            "tags": ["snack"],
        }
        text = build_embedding_text(
            title="Title",
            caption="Caption https://x.y",
            transcript="Transcript",
            analysis=analysis,
            recipe=recipe,
        )
        lines = text.split("\n")
        assert lines[:4] == ["Title", "Caption", "Transcript", "Quick roasted chickpeas."]
        assert lines[4:8] == [
            "key points: roast 25 min",
            "topics: snack, vegan",
            "entities: chickpeas",
            "screen: 200C",
        ]
        assert lines[8:] == [
            "recipe title: Crispy chickpeas",
            "ingredients: 1 can chickpeas",
            "steps: Roast.",
            "tags: snack",
        ]

    def test_empty_sections_skipped(self):
        assert build_embedding_text(title="Only title", caption=None, transcript=None) == "Only title"

    def test_analysis_and_recipe_none(self):
        assert build_analysis_text(None) == ""
        assert build_recipe_text(None) == ""
