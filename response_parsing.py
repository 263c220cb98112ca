"""
Parse-and-validate step for provider responses.
Provider text is never trusted: every field is checked before a model object is
built, and the outcome is an Ok or an Err instead of an exception.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from data_models import (
    Character,
    DecisionImpact,
    DecisionOption,
    Scene,
    SceneFramework,
    ScenePerspectives,
)
from generation_service import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

# Provider JSON uses camelCase keys
_FRAMEWORK_KEYS = {
    "saveTheCat": SceneFramework.SAVE_THE_CAT,
    "heroJourney": SceneFramework.HERO_JOURNEY,
    "aristotle": SceneFramework.ARISTOTLE,
    "egri": SceneFramework.EGRI,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: ProviderError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


@dataclass
class HealthAnalysis:
    """Narrative critique of a story's health"""
    analysis: str
    recommendations: List[str]
    strengths: List[str]
    weaknesses: List[str]
    degraded: bool = False


def _fail(message: str) -> Err:
    logger.debug(f"Rejected provider response: {message}")
    return Err(ProviderError(message))


def load_json_object(text: Optional[str]) -> Result[Dict[str, Any]]:
    """Decode a JSON object, tolerating a surrounding markdown code fence"""
    if not text or not text.strip():
        return _fail("Empty response")

    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        return _fail(f"Response is not valid JSON: {e}")

    if not isinstance(data, dict):
        return _fail(f"Expected a JSON object, got {type(data).__name__}")
    return Ok(data)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"'{field_name}' must be a list of strings")
    return value


def _optional_string(data: Dict[str, Any], key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _key_by_character_id(notes: Dict[str, str], characters: List[Character]) -> Dict[str, str]:
    by_name = {c.name.strip().lower(): c.id for c in characters}
    ids = {c.id for c in characters}
    keyed = {}
    for key, note in notes.items():
        character_id = key if key in ids else by_name.get(key.strip().lower())
        if character_id is None:
            logger.debug(f"Ignoring development note for unknown character: {key}")
            continue
        keyed[character_id] = note
    return keyed


def _parse_impact(raw: Any) -> DecisionImpact:
    if not isinstance(raw, dict):
        raise ValueError("'impact' must be an object")
    scores = {}
    for name in ("premise", "character", "structure", "theme"):
        value = raw.get(name)
        if not _is_number(value) or not 0 <= value <= 100:
            raise ValueError(f"impact.{name} must be a number in [0, 100], got {value!r}")
        scores[name] = float(value)
    return DecisionImpact(**scores)


def _parse_option(raw: Any, index: int, id_prefix: str) -> DecisionOption:
    if not isinstance(raw, dict):
        raise ValueError(f"option {index} is not an object")

    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValueError(f"option {index} has no title")

    option_id = raw.get("id")
    if option_id is None:
        option_id = f"{id_prefix}_{index + 1}"
    elif not isinstance(option_id, (str, int)) or isinstance(option_id, bool):
        raise ValueError(f"option {index} has an invalid id")

    return DecisionOption(
        id=str(option_id),
        title=title.strip(),
        description=_optional_string(raw, "description"),
        impact=_parse_impact(raw.get("impact")),
        analysis=_optional_string(raw, "analysis"),
        examples=tuple(_string_list(raw.get("examples"), "examples")),
    )


def parse_decision_options(text: Optional[str], id_prefix: str = "option") -> Result[List[DecisionOption]]:
    """Parse {"options": [...]} into validated decision options"""
    loaded = load_json_object(text)
    if not loaded.ok:
        return loaded

    raw_options = loaded.value.get("options")
    if not isinstance(raw_options, list) or not raw_options:
        return _fail("Response has no 'options' list")

    try:
        options = [_parse_option(raw, i, id_prefix) for i, raw in enumerate(raw_options)]
    except ValueError as e:
        return _fail(str(e))

    ids = [o.id for o in options]
    if len(set(ids)) != len(ids):
        return _fail(f"Duplicate option ids: {ids}")
    return Ok(options)


def _parse_score(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key)
    if value is None:
        return default
    if not _is_number(value) or not 0 <= value <= 10:
        raise ValueError(f"'{key}' must be a number in [0, 10], got {value!r}")
    return float(value)


def parse_scene(text: Optional[str], scene_id: str, position: int,
                characters: Optional[List[Character]] = None) -> Result[Scene]:
    """Parse a generated scene; missing scores default to 5.

    When the cast is given, development notes are keyed by character id; notes
    addressed by character name are moved onto the id, others are dropped.
    """
    loaded = load_json_object(text)
    if not loaded.ok:
        return loaded
    data = loaded.value

    try:
        content = _optional_string(data, "content")
        title = _optional_string(data, "title") or f"Scene {position}"

        raw_beats = data.get("frameworkBeats") or {}
        if not isinstance(raw_beats, dict):
            raise ValueError("'frameworkBeats' must be an object")
        beats = {}
        for key, beat in raw_beats.items():
            framework = _FRAMEWORK_KEYS.get(key)
            if framework is None:
                logger.debug(f"Ignoring unknown framework beat: {key}")
                continue
            if beat is not None and not isinstance(beat, str):
                raise ValueError(f"frameworkBeats.{key} must be a string")
            beats[framework] = beat

        developments = data.get("characterDevelopments") or {}
        if not isinstance(developments, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in developments.items()
        ):
            raise ValueError("'characterDevelopments' must map characters to strings")
        if characters is not None:
            developments = _key_by_character_id(developments, characters)

        raw_perspectives = data.get("perspectives") or {}
        if not isinstance(raw_perspectives, dict):
            raise ValueError("'perspectives' must be an object")
        perspectives = ScenePerspectives(
            objective=_optional_string(raw_perspectives, "objective") or content,
            protagonist=_optional_string(raw_perspectives, "protagonist"),
            antagonist=_optional_string(raw_perspectives, "antagonist"),
        )

        scene = Scene(
            id=scene_id,
            title=title,
            content=content,
            position=position,
            framework_beats=beats,
            premise_advancement=_parse_score(data, "premiseAdvancement", 5.0),
            conflict_level=_parse_score(data, "conflictLevel", 5.0),
            character_developments=dict(developments),
            perspectives=perspectives,
        )
    except ValueError as e:
        return _fail(str(e))

    return Ok(scene)


def parse_health_analysis(text: Optional[str]) -> Result[HealthAnalysis]:
    """Parse an analysis response with analysis text and three string lists"""
    loaded = load_json_object(text)
    if not loaded.ok:
        return loaded
    data = loaded.value

    try:
        analysis = data.get("analysis")
        if not isinstance(analysis, str) or not analysis.strip():
            raise ValueError("'analysis' must be a non-empty string")
        return Ok(HealthAnalysis(
            analysis=analysis,
            recommendations=_string_list(data.get("recommendations"), "recommendations"),
            strengths=_string_list(data.get("strengths"), "strengths"),
            weaknesses=_string_list(data.get("weaknesses"), "weaknesses"),
        ))
    except ValueError as e:
        return _fail(str(e))
