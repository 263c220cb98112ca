"""
Tests for strict parsing of provider responses.
"""

import json

import pytest

from data_models import Character, CharacterRole, SceneFramework
from generation_service import ProviderError
from response_parsing import (
    load_json_object,
    parse_decision_options,
    parse_health_analysis,
    parse_scene,
)
from tests.conftest import options_json, scene_json


class TestLoadJsonObject:
    """Test JSON decoding of raw provider text"""

    def test_plain_object(self):
        result = load_json_object('{"a": 1}')
        assert result.ok
        assert result.value == {"a": 1}

    def test_fenced_object(self):
        result = load_json_object('```json\n{"a": 1}\n```')
        assert result.ok
        assert result.value == {"a": 1}

    @pytest.mark.parametrize("text", [None, "", "   ", "not json", "[1, 2]", '"text"'])
    def test_rejected(self, text):
        result = load_json_object(text)
        assert not result.ok
        assert isinstance(result.error, ProviderError)


class TestDecisionOptions:
    """Test option list validation"""

    def test_valid_options(self):
        result = parse_decision_options(options_json("Greed leads to isolation", "Pride", prefix="premise"))
        assert result.ok
        first = result.value[0]
        assert first.id == "premise_1"
        assert first.title == "Greed leads to isolation"
        assert first.impact.theme == 90.0
        assert first.examples == ("Example",)

    def test_missing_ids_are_generated(self):
        text = json.dumps({"options": [
            {"title": "A", "impact": {"premise": 1, "character": 2, "structure": 3, "theme": 4}},
            {"title": "B", "impact": {"premise": 1, "character": 2, "structure": 3, "theme": 4}},
        ]})
        result = parse_decision_options(text, id_prefix="character")
        assert [o.id for o in result.value] == ["character_1", "character_2"]
        assert result.value[0].description == ""

    @pytest.mark.parametrize("payload", [
        {},
        {"options": []},
        {"options": "many"},
        {"options": [{"impact": {"premise": 1, "character": 1, "structure": 1, "theme": 1}}]},
        {"options": [{"title": "A"}]},
        {"options": [{"title": "A", "impact": {"premise": 101, "character": 1, "structure": 1, "theme": 1}}]},
        {"options": [{"title": "A", "impact": {"premise": "high", "character": 1, "structure": 1, "theme": 1}}]},
        {"options": [{"title": "A", "impact": {"premise": True, "character": 1, "structure": 1, "theme": 1}}]},
        {"options": [{"title": "A", "impact": {"premise": 1, "character": 1, "structure": 1}}]},
    ])
    def test_invalid_payloads(self, payload):
        assert not parse_decision_options(json.dumps(payload)).ok

    def test_duplicate_ids_rejected(self):
        impact = {"premise": 1, "character": 1, "structure": 1, "theme": 1}
        text = json.dumps({"options": [
            {"id": "x", "title": "A", "impact": impact},
            {"id": "x", "title": "B", "impact": impact},
        ]})
        result = parse_decision_options(text)
        assert not result.ok
        assert "Duplicate" in str(result.error)

    def test_examples_must_be_strings(self):
        impact = {"premise": 1, "character": 1, "structure": 1, "theme": 1}
        text = json.dumps({"options": [{"title": "A", "impact": impact, "examples": [1, 2]}]})
        assert not parse_decision_options(text).ok


class TestScene:
    """Test generated scene validation"""

    def test_valid_scene(self):
        result = parse_scene(scene_json(), "scene_1", 3)
        assert result.ok
        scene = result.value
        assert scene.id == "scene_1"
        assert scene.position == 3
        assert scene.framework_beats[SceneFramework.SAVE_THE_CAT] == "Opening Image"
        assert scene.framework_beats[SceneFramework.EGRI] == "Point of attack"
        assert scene.perspectives.antagonist == "Marcus sees leverage."
        assert scene.premise_advancement == 6.0
        assert scene.conflict_level == 7.0

    def test_defaults(self):
        result = parse_scene(json.dumps({"content": "Only content"}), "s", 2)
        scene = result.value
        assert scene.title == "Scene 2"
        assert scene.conflict_level == 5.0
        assert scene.premise_advancement == 5.0
        assert scene.perspectives.objective == "Only content"
        assert scene.framework_beats == {}

    def test_unknown_beats_ignored(self):
        result = parse_scene(scene_json(frameworkBeats={"kishotenketsu": "Ki", "egri": None}), "s", 1)
        assert result.value.framework_beats == {SceneFramework.EGRI: None}

    def test_developments_keyed_by_character_id(self):
        cast = [
            Character(id="char_1_protagonist", name="Alex Morgan", role=CharacterRole.PROTAGONIST),
            Character(id="char_1_antagonist", name="Marcus Vale", role=CharacterRole.ANTAGONIST),
        ]
        text = scene_json(characterDevelopments={
            "alex morgan": "Doubts the partner",
            "char_1_antagonist": "Tightens the net",
            "Stranger": "Walks by",
        })

        scene = parse_scene(text, "s", 1, cast).value

        assert scene.character_developments == {
            "char_1_protagonist": "Doubts the partner",
            "char_1_antagonist": "Tightens the net",
        }

    def test_developments_untouched_without_cast(self):
        assert parse_scene(scene_json(), "s", 1).value.character_developments == {
            "Alex Morgan": "Doubts the partner"
        }

    @pytest.mark.parametrize("overrides", [
        {"conflictLevel": 11},
        {"conflictLevel": -1},
        {"conflictLevel": "high"},
        {"premiseAdvancement": 10.5},
        {"frameworkBeats": ["egri"]},
        {"perspectives": "none"},
        {"characterDevelopments": {"Alex": 3}},
        {"title": 7},
    ])
    def test_invalid_scene(self, overrides):
        assert not parse_scene(scene_json(**overrides), "s", 1).ok


class TestHealthAnalysis:
    """Test analysis response validation"""

    def test_valid_analysis(self):
        text = json.dumps({
            "analysis": "Solid start",
            "recommendations": ["Add a midpoint"],
            "strengths": ["Clear premise"],
            "weaknesses": ["Thin cast"],
        })
        result = parse_health_analysis(text)
        assert result.ok
        assert result.value.recommendations == ["Add a midpoint"]
        assert not result.value.degraded

    def test_lists_default_to_empty(self):
        result = parse_health_analysis('{"analysis": "Fine"}')
        assert result.value.strengths == []

    @pytest.mark.parametrize("payload", [
        {"recommendations": []},
        {"analysis": ""},
        {"analysis": "x", "strengths": "all of them"},
    ])
    def test_invalid_analysis(self, payload):
        assert not parse_health_analysis(json.dumps(payload)).ok
