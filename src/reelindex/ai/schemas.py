"""Typed views of the JSON the analysis providers return.

Every `from_dict` validates shape and types and raises AnalysisError on
anything it cannot coerce, so callers can re-ask the provider instead of
trusting whatever came back. Optional fields are typed nullable.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import AnalysisError

CONTENT_TYPES = ("recipe", "tutorial", "travel", "humor", "product", "news", "music", "other")
PROVENANCE_SOURCES = ("caption", "transcript", "ocr", "model")

# Scalar recipe fields a model may fill by inference; each can carry provenance.
INFERABLE_FIELDS = ("servings", "total_time_minutes", "author")


def _require_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise AnalysisError(f"{what}: expected a JSON object, got {type(data).__name__}")
    return data


def _str_list(data: Dict[str, Any], key: str, what: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise AnalysisError(f"{what}.{key}: expected a list of strings")
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_float(value: Any, what: str) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise AnalysisError(f"{what}: expected a number, got a boolean")
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise AnalysisError(f"{what}: expected a number, got {value!r}") from e
    # json.loads accepts NaN and Infinity
    if not math.isfinite(num):
        raise AnalysisError(f"{what}: expected a finite number, got {value!r}")
    return num


def _unit(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return min(1.0, max(0.0, value))


def _content_type(value: Any) -> str:
    ct = str(value or "other").strip().lower()
    return ct if ct in CONTENT_TYPES else "other"


@dataclass
class Analysis:
    """General understanding of a post (pass A)."""

    content_type: str = "other"
    summary: Optional[str] = None
    topics: List[str] = field(default_factory=list)
    key_points: List[str] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    screen_text: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    confidence: Optional[float] = None

    @property
    def is_recipe(self) -> bool:
        return self.content_type == "recipe"

    @classmethod
    def from_dict(cls, data: Any) -> "Analysis":
        d = _require_dict(data, "analysis")
        return cls(
            content_type=_content_type(d.get("content_type")),
            summary=_opt_str(d.get("summary")),
            topics=[t.lower() for t in _str_list(d, "topics", "analysis")],
            key_points=_str_list(d, "key_points", "analysis"),
            entities=_str_list(d, "entities", "analysis"),
            screen_text=_str_list(d, "screen_text", "analysis"),
            links=_str_list(d, "links", "analysis"),
            confidence=_unit(_opt_float(d.get("confidence"), "analysis.confidence")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_type": self.content_type,
            "summary": self.summary,
            "topics": list(self.topics),
            "key_points": list(self.key_points),
            "entities": list(self.entities),
            "screen_text": list(self.screen_text),
            "links": list(self.links),
            "confidence": self.confidence,
        }


@dataclass
class Classification:
    """Text-only classifier output (fallback pass A)."""

    content_type: str = "other"
    topics: List[str] = field(default_factory=list)
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Classification":
        d = _require_dict(data, "classification")
        return cls(
            content_type=_content_type(d.get("content_type")),
            topics=[t.lower() for t in _str_list(d, "topics", "classification")],
            confidence=_unit(_opt_float(d.get("confidence"), "classification.confidence")),
        )

    def to_analysis(self) -> Analysis:
        return Analysis(
            content_type=self.content_type,
            topics=list(self.topics),
            confidence=self.confidence if self.confidence is not None else 0.5,
        )


@dataclass
class Ingredient:
    name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "quantity": self.quantity, "unit": self.unit, "notes": self.notes}


@dataclass
class Step:
    index: int
    instruction: str
    timer_minutes: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "instruction": self.instruction, "timer_minutes": self.timer_minutes}


@dataclass
class Provenance:
    source: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "confidence": self.confidence}


@dataclass
class Recipe:
    """Structured recipe extraction (pass B)."""

    title: str
    recipe_id: Optional[str] = None
    source: Dict[str, Optional[str]] = field(default_factory=dict)
    author: Optional[str] = None
    servings: Optional[float] = None
    total_time_minutes: Optional[float] = None
    ingredients: List[Ingredient] = field(default_factory=list)
    steps: List[Step] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    confidence: Dict[str, float] = field(default_factory=dict)
    provenance: Dict[str, Provenance] = field(default_factory=dict)
    has_inferred_values: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "Recipe":
        d = _require_dict(data, "recipe")

        ingredients: List[Ingredient] = []
        raw_ingredients = d.get("ingredients") or []
        if not isinstance(raw_ingredients, list):
            raise AnalysisError("recipe.ingredients: expected a list")
        for i, ing in enumerate(raw_ingredients):
            if isinstance(ing, str):
                ing = {"name": ing}
            ing = _require_dict(ing, f"recipe.ingredients[{i}]")
            name = _opt_str(ing.get("name"))
            if not name:
                continue
            ingredients.append(Ingredient(
                name=name,
                quantity=_opt_float(ing.get("quantity"), f"recipe.ingredients[{i}].quantity"),
                unit=_opt_str(ing.get("unit")),
                notes=_opt_str(ing.get("notes")),
            ))

        steps: List[Step] = []
        raw_steps = d.get("steps") or []
        if not isinstance(raw_steps, list):
            raise AnalysisError("recipe.steps: expected a list")
        for i, st in enumerate(raw_steps):
            if isinstance(st, str):
                st = {"instruction": st}
            st = _require_dict(st, f"recipe.steps[{i}]")
            instruction = _opt_str(st.get("instruction"))
            if not instruction:
                continue
            index = _opt_float(st.get("index"), f"recipe.steps[{i}].index")
            steps.append(Step(
                index=int(index) if index is not None else len(steps) + 1,
                instruction=instruction,
                timer_minutes=_opt_float(st.get("timer_minutes"), f"recipe.steps[{i}].timer_minutes"),
            ))

        confidence: Dict[str, float] = {}
        raw_conf = d.get("confidence") or {}
        if isinstance(raw_conf, dict):
            for key, value in raw_conf.items():
                num = _opt_float(value, f"recipe.confidence.{key}")
                if num is not None:
                    confidence[str(key)] = _unit(num)  # type: ignore[assignment]

        provenance: Dict[str, Provenance] = {}
        raw_prov = d.get("provenance") or {}
        if isinstance(raw_prov, dict):
            for key, value in raw_prov.items():
                if not isinstance(value, dict):
                    continue
                src = _opt_str(value.get("source"))
                provenance[str(key)] = Provenance(
                    source=src.lower() if src and src.lower() in PROVENANCE_SOURCES else None,
                    confidence=_unit(_opt_float(value.get("confidence"), f"recipe.provenance.{key}.confidence")),
                )

        source = d.get("source") if isinstance(d.get("source"), dict) else {}
        flags = d.get("flags") if isinstance(d.get("flags"), dict) else {}

        return cls(
            title=_opt_str(d.get("title")) or "",
            recipe_id=_opt_str(d.get("recipe_id")),
            source={k: _opt_str(source.get(k)) for k in ("platform", "url", "post_id")},
            author=_opt_str(d.get("author")),
            servings=_opt_float(d.get("servings"), "recipe.servings"),
            total_time_minutes=_opt_float(d.get("total_time_minutes"), "recipe.total_time_minutes"),
            ingredients=ingredients,
            steps=steps,
            tags=_str_list(d, "tags", "recipe"),
            confidence=confidence,
            provenance=provenance,
            has_inferred_values=bool(flags.get("has_inferred_values", False)),
        )

    def normalize(self, *, platform: str, url: str, post_id: str) -> "Recipe":
        """Fill identity fields from the post metadata."""
        if not self.recipe_id:
            self.recipe_id = f"{platform}:{post_id}"
        merged = {"platform": platform, "url": url, "post_id": post_id}
        merged.update({k: v for k, v in self.source.items() if v})
        self.source = merged
        return self

    def apply_inference_policy(self, *, allow_inference: bool, ceiling: float = 0.7) -> "Recipe":
        """Enforce what the model may fill in by itself.

        Disallowed: every model-sourced value is nulled and the flag cleared.
        Allowed: model-sourced confidences are capped at `ceiling` and the
        flag is set when any value is model-sourced.
        """
        inferred = [name for name, prov in self.provenance.items() if prov.source == "model"]
        if not allow_inference:
            for name in inferred:
                if name in INFERABLE_FIELDS:
                    setattr(self, name, None)
                self.provenance[name] = Provenance(source=None, confidence=None)
            self.has_inferred_values = False
            return self

        for name in inferred:
            prov = self.provenance[name]
            prov.confidence = min(prov.confidence if prov.confidence is not None else ceiling, ceiling)
        self.has_inferred_values = bool(inferred) or self.has_inferred_values
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipe_id": self.recipe_id,
            "source": dict(self.source),
            "title": self.title,
            "author": self.author,
            "servings": self.servings,
            "total_time_minutes": self.total_time_minutes,
            "ingredients": [i.to_dict() for i in self.ingredients],
            "steps": [s.to_dict() for s in self.steps],
            "tags": list(self.tags),
            "confidence": dict(self.confidence),
            "provenance": {k: v.to_dict() for k, v in self.provenance.items()},
            "flags": {"has_inferred_values": self.has_inferred_values},
        }
