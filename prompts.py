"""
Prompt templates for the story engine and the export format catalogue.
"""

from functools import lru_cache
from typing import Dict, List

from data_models import Character, ExportFormat, Premise, StoryProject

PREMISE_OPTION_COUNT = 5
CHARACTER_OPTION_COUNT = 4

OPTION_JSON_SHAPE = (
    '{\n'
    '  "options": [\n'
    '    {\n'
    '      "id": "option_1",\n'
    '      "title": "Option title",\n'
    '      "description": "Deep analysis of the option",\n'
    '      "impact": {"premise": 95, "character": 85, "structure": 90, "theme": 88},\n'
    '      "analysis": "Why this option creates powerful story potential",\n'
    '      "examples": ["Example 1", "Example 2"]\n'
    '    }\n'
    '  ]\n'
    '}'
)

FORMAT_CATALOGUE: Dict[ExportFormat, Dict[str, object]] = {
    ExportFormat.SCREENPLAY: {
        "title": "Feature Screenplay",
        "description": "Industry-standard screenplay format (90-120 pages)",
        "features": [
            "Professional formatting",
            "Visual storytelling emphasis",
            "Three-act commercial structure",
            "Production-ready annotations",
        ],
    },
    ExportFormat.NOVEL: {
        "title": "Novel Manuscript",
        "description": "Full prose adaptation with rich internal narrative",
        "features": [
            "Prose style adaptation",
            "Internal monologue expansion",
            "Chapter structure optimization",
            "Literary device integration",
        ],
    },
    ExportFormat.STAGE_PLAY: {
        "title": "Stage Play",
        "description": "Theatrical adaptation for live performance",
        "features": [
            "Theatrical formatting",
            "Unity of time/place emphasis",
            "Dialogue-driven adaptation",
            "Technical staging notes",
        ],
    },
    ExportFormat.TV_SERIES: {
        "title": "Television Series",
        "description": "Multi-episode series bible and pilot script",
        "features": [
            "Season arc planning",
            "Episode breakdown",
            "Character long-term development",
            "Writers' room documentation",
        ],
    },
    ExportFormat.GAME: {
        "title": "Interactive/Game Narrative",
        "description": "Branching narrative for interactive media",
        "features": [
            "Branching path architecture",
            "Player agency integration",
            "Environmental storytelling",
            "Dialogue trees and quest structure",
        ],
    },
}


def premise_options_prompt(concept: str) -> str:
    return (
        f'Analyze this story concept and generate {PREMISE_OPTION_COUNT} compelling premise options '
        'following Lajos Egri\'s format: "[Human trait/choice/belief] leads to [inevitable consequence]"\n\n'
        f'Concept: "{concept}"\n\n'
        'For each premise, provide:\n'
        '1. The premise statement as the title\n'
        '2. Philosophical analysis of why this matters\n'
        '3. Dramatic potential (conflict opportunities)\n'
        '4. Examples from literature/film\n'
        '5. Unique angle that makes it fresh\n\n'
        'Impact scores are integers from 0 to 100.\n'
        f'Respond with JSON only, using this structure:\n{OPTION_JSON_SHAPE}'
    )


def character_options_prompt(premise: Premise) -> str:
    return (
        f'Create {CHARACTER_OPTION_COUNT} different character constellation approaches '
        f'for this premise: "{premise.statement}"\n\n'
        'Each approach should cover:\n'
        '1. Protagonist design (3-dimensional Egrian character)\n'
        '2. Antagonist design (perfect opposition)\n'
        '3. Supporting cast (2-3 key characters)\n'
        '4. Relationship dynamics\n'
        '5. How this configuration proves the premise\n\n'
        'Put the approach name in the title and the details in the description.\n'
        f'Respond with JSON only, using this structure:\n{OPTION_JSON_SHAPE}'
    )


def scene_prompt(premise: Premise, characters: List[Character], context: str, position: int) -> str:
    protagonist = next((c.name for c in characters if c.role.value == "protagonist"), "the protagonist")
    antagonist = next((c.name for c in characters if c.role.value == "antagonist"), "the antagonist")
    cast = ", ".join(f"{c.name} ({c.role.value}, id {c.id})" for c in characters)
    return (
        f'Create a scene that advances the premise: "{premise.statement}"\n\n'
        f'Context: {context}\n'
        f'Position: Scene {position}\n'
        f'Characters: {cast}\n\n'
        'Respond with JSON only, with these keys:\n'
        '- "title": scene title\n'
        '- "content": objective narrative (what actually happens)\n'
        f'- "perspectives": {{"objective", "protagonist" (how {protagonist} experiences events), '
        f'"antagonist" (how {antagonist} interprets events)}}\n'
        '- "frameworkBeats": {"saveTheCat", "heroJourney", "aristotle", "egri"} beat names\n'
        '- "premiseAdvancement": number from 0 to 10\n'
        '- "conflictLevel": number from 0 to 10\n'
        '- "characterDevelopments": object mapping character id to a development note'
    )


@lru_cache(maxsize=8)
def format_instruction(target_format: ExportFormat) -> str:
    """Describe what a target format rendering must contain"""
    profile = FORMAT_CATALOGUE[target_format]
    features = "\n".join(f"- {feature}" for feature in profile["features"])
    return f"{profile['title']}: {profile['description']}\n{features}"


def export_prompt(project: StoryProject, target_format: ExportFormat) -> str:
    characters = "\n".join(
        f"{c.name} ({c.role.value}): {c.psychology.motivation}" for c in project.characters
    )
    scenes = "\n\n".join(f"Scene {s.position}: {s.title}\n{s.content}" for s in project.scenes)
    return (
        f'Convert this story to {target_format.value} format.\n\n'
        f'{format_instruction(target_format)}\n\n'
        f'Premise: "{project.premise.statement}"\n'
        f'Characters:\n{characters}\n\n'
        f'Scenes:\n{scenes}\n\n'
        f'Format according to industry standards for {target_format.value}. '
        'Include proper formatting, structure, and professional presentation.'
    )


def analysis_prompt(project: StoryProject) -> str:
    roles = ", ".join(c.role.value for c in project.characters)
    return (
        'Analyze this story\'s health:\n\n'
        f'Premise: "{project.premise.statement}"\n'
        f'Characters: {len(project.characters)} ({roles})\n'
        f'Scenes: {len(project.scenes)}\n\n'
        'Analyze:\n'
        '1. Premise clarity and proof progression\n'
        '2. Character dimensional depth\n'
        '3. Structural integrity\n'
        '4. Thematic coherence\n'
        '5. Conflict escalation\n\n'
        'Respond with JSON only: {"analysis": "...", "recommendations": [...], '
        '"strengths": [...], "weaknesses": [...]}'
    )
