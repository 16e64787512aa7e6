"""Tests for AI response validation and the recipe inference policy."""

from __future__ import annotations

import json

import pytest

from reelindex.ai.schemas import Analysis, Classification, Recipe
from reelindex.errors import AnalysisError


class TestAnalysis:
    def test_from_dict_normalizes(self):
        a = Analysis.from_dict({
            "content_type": "Recipe",
            "summary": "  Crispy chickpeas  ",
            "topics": ["Snack", "Vegan"],
            "confidence": 1.4,
        })
        assert a.content_type == "recipe"
        assert a.is_recipe
        assert a.summary == "Crispy chickpeas"
        assert a.topics == ["snack", "vegan"]
        assert a.confidence == 1.0

    def test_unknown_content_type_becomes_other(self):
        assert Analysis.from_dict({"content_type": "cooking"}).content_type == "other"

    def test_rejects_non_object(self):
        with pytest.raises(AnalysisError):
            Analysis.from_dict(["not", "an", "object"])

    def test_rejects_bad_list(self):
        with pytest.raises(AnalysisError):
            Analysis.from_dict({"topics": {"a": 1}})

    def test_rejects_bad_confidence(self):
        with pytest.raises(AnalysisError):
            Analysis.from_dict({"confidence": "high"})


def test_classification_to_analysis_defaults_confidence():
    c = Classification.from_dict({"content_type": "recipe", "topics": ["Pasta"]})
    a = c.to_analysis()
    assert a.content_type == "recipe"
    assert a.topics == ["pasta"]
    assert a.summary is None
    assert a.confidence == 0.5


def _recipe_payload() -> dict:
    return {
        "title": "Crispy chickpeas",
        "servings": 2,
        "total_time_minutes": 30,
        "author": "Cook Channel",
        "ingredients": [{"name": "chickpeas", "quantity": "1", "unit": "can"}, "salt", {"name": ""}],
        "steps": ["Drain.", {"instruction": "Roast.", "timer_minutes": 25}],
        "provenance": {
            "servings": {"source": "model", "confidence": 0.9},
            "total_time_minutes": {"source": "caption", "confidence": 0.95},
        },
        "flags": {"has_inferred_values": False},
    }


class TestRecipe:
    def test_from_dict_coerces(self):
        r = Recipe.from_dict(_recipe_payload())
        assert [i.name for i in r.ingredients] == ["chickpeas", "salt"]
        assert r.ingredients[0].quantity == 1.0
        assert [s.index for s in r.steps] == [1, 2]
        assert r.steps[1].timer_minutes == 25.0

    def test_rejects_non_numeric_servings(self):
        payload = _recipe_payload()
        payload["servings"] = "a few"
        with pytest.raises(AnalysisError):
            Recipe.from_dict(payload)

    def test_normalize_fills_identity(self):
        r = Recipe.from_dict(_recipe_payload()).normalize(
            platform="youtube", url="https://youtu.be/abc123", post_id="abc123"
        )
        assert r.recipe_id == "youtube:abc123"
        assert r.source == {"platform": "youtube", "url": "https://youtu.be/abc123", "post_id": "abc123"}

    def test_normalize_keeps_model_recipe_id(self):
        payload = _recipe_payload()
        payload["recipe_id"] = "custom"
        r = Recipe.from_dict(payload).normalize(platform="youtube", url="u", post_id="p")
        assert r.recipe_id == "custom"

    def test_inference_disallowed_nulls_model_values(self):
        r = Recipe.from_dict(_recipe_payload()).apply_inference_policy(allow_inference=False)
        assert r.servings is None
        assert r.provenance["servings"].source is None
        # Caption-sourced values survive
        assert r.total_time_minutes == 30.0
        assert r.has_inferred_values is False
        assert r.to_dict()["flags"] == {"has_inferred_values": False}

    def test_inference_allowed_caps_confidence(self):
        r = Recipe.from_dict(_recipe_payload()).apply_inference_policy(allow_inference=True, ceiling=0.7)
        assert r.servings == 2.0
        assert r.provenance["servings"].confidence == 0.7
        assert r.provenance["total_time_minutes"].confidence == 0.95
        assert r.has_inferred_values is True

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), "1e999"])
    def test_rejects_non_finite_step_index(self, bad):
        payload = _recipe_payload()
        payload["steps"] = [{"index": bad, "instruction": "Roast."}]
        with pytest.raises(AnalysisError, match="finite"):
            Recipe.from_dict(payload)

    def test_rejects_nan_from_json_text(self):
        payload = json.loads('{"title": "x", "servings": NaN}')
        with pytest.raises(AnalysisError, match="recipe.servings"):
            Recipe.from_dict(payload)
