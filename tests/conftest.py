"""
Shared fixtures for the story engine test suite.
"""

import asyncio
import json
from typing import List, Optional

import pytest

from data_models import (
    Character,
    CharacterRole,
    Premise,
    Scene,
    StoryProject,
    attach_character,
    attach_scene,
    create_story,
    replace_premise,
)
from generation_service import PromptSpec, ProviderError


class ScriptedProvider:
    """Text provider that replays queued responses.

    A queued exception is raised instead of returned. When ``gate`` is set,
    every call waits for it before answering.
    """

    def __init__(self, responses: Optional[List] = None):
        self.responses = list(responses or [])
        self.calls: List[PromptSpec] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    def queue(self, *responses):
        self.responses.extend(responses)

    async def generate(self, spec: PromptSpec) -> str:
        self.calls.append(spec)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            raise ProviderError("No scripted response")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def options_json(*titles, prefix="option", impact=None):
    impact = impact or {"premise": 80, "character": 70, "structure": 60, "theme": 90}
    return json.dumps({
        "options": [
            {
                "id": f"{prefix}_{i + 1}",
                "title": title,
                "description": f"About {title}",
                "impact": impact,
                "analysis": "Strong conflict",
                "examples": ["Example"],
            }
            for i, title in enumerate(titles)
        ]
    })


def scene_json(**overrides):
    data = {
        "title": "The Offer",
        "content": "A rain-soaked meeting at the docks.",
        "frameworkBeats": {
            "saveTheCat": "Opening Image",
            "heroJourney": "Ordinary World",
            "aristotle": "Beginning",
            "egri": "Point of attack",
        },
        "characterDevelopments": {"Alex Morgan": "Doubts the partner"},
        "perspectives": {
            "objective": "Two people talk at the docks.",
            "protagonist": "Alex sees a trap.",
            "antagonist": "Marcus sees leverage.",
        },
        "premiseAdvancement": 6,
        "conflictLevel": 7,
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def empty_project() -> StoryProject:
    return create_story("The Long Night", "user_1")


@pytest.fixture
def full_project() -> StoryProject:
    """A story with premise, protagonist, antagonist and one scene"""
    project = create_story("The Long Night", "user_1")
    replace_premise(project, Premise(
        id="premise_1",
        statement="Greed leads to isolation",
        trait="Greed",
        consequence="isolation",
        strength=4.0,
        provability=3.5,
        conflict_potential=4.5,
        philosophical_depth=3.0,
    ))
    attach_character(project, Character(id="char_p", name="Alex", role=CharacterRole.PROTAGONIST))
    attach_character(project, Character(id="char_a", name="Marcus", role=CharacterRole.ANTAGONIST))
    attach_scene(project, Scene(id="scene_1", title="Opening", content="It begins.",
                                position=1, conflict_level=6.0))
    return project
