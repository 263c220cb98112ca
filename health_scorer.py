"""
Story health scoring.
Derives the six 0-100 quality dimensions of a story document and their mean.
"""

from typing import Dict, List

from data_models import StoryHealth, StoryProject

# Premise dimensions are stored on a 0-5 scale
PREMISE_SCALE = 20
SCENES_FOR_FULL_STRUCTURE = 10
CHARACTER_DEPTH_STEP = 25
# Scene conflict level is on a 0-10 scale
CONFLICT_SCALE = 20

METRIC_DESCRIPTIONS = {
    "premise_clarity": "How clearly the story proves its central premise",
    "structural_integrity": "Adherence to narrative frameworks and pacing",
    "character_depth": "Three-dimensional character development",
    "pacing_effectiveness": "Rhythm and momentum of story progression",
    "conflict_power": "Strength and escalation of dramatic conflict",
    "thematic_unity": "Coherence of philosophical and thematic elements",
}


def score(project: StoryProject) -> StoryHealth:
    """Compute the health of a story document.

    Pure function of the document: no I/O, no mutation, same input same output.
    Pacing, conflict power and thematic unity are deliberately not clamped.
    """
    premise = project.premise
    scene_count = len(project.scenes)
    character_count = len(project.characters)

    premise_clarity = min(100.0, premise.strength * PREMISE_SCALE) if premise.statement else 0.0

    structural_integrity = (
        min(100.0, (scene_count / SCENES_FOR_FULL_STRUCTURE) * 100) if scene_count else 0.0
    )

    character_depth = (
        min(100.0, float(character_count * CHARACTER_DEPTH_STEP)) if character_count else 0.0
    )

    if scene_count:
        mean_conflict = sum(s.conflict_level for s in project.scenes) / scene_count
        pacing_effectiveness = mean_conflict * CONFLICT_SCALE
    else:
        pacing_effectiveness = 0.0

    conflict_power = premise.conflict_potential * PREMISE_SCALE
    thematic_unity = premise.philosophical_depth * PREMISE_SCALE

    overall = (
        premise_clarity + structural_integrity + character_depth
        + pacing_effectiveness + conflict_power + thematic_unity
    ) / 6

    return StoryHealth(
        premise_clarity=premise_clarity,
        structural_integrity=structural_integrity,
        character_depth=character_depth,
        pacing_effectiveness=pacing_effectiveness,
        conflict_power=conflict_power,
        thematic_unity=thematic_unity,
        overall=overall,
    )


def refresh_health(project: StoryProject) -> StoryHealth:
    """Recompute and cache the health snapshot on the document"""
    project.health = score(project)
    return project.health


def health_status(value: float) -> str:
    """Get a human-readable band for a 0-100 score"""
    if value >= 80:
        return "Excellent"
    if value >= 60:
        return "Good"
    if value >= 40:
        return "Needs Work"
    return "Critical"


def health_report(health: StoryHealth) -> List[Dict[str, object]]:
    """Describe each health dimension for display"""
    report = []
    for name, value in health.dimensions().items():
        report.append({
            "metric": name,
            "label": name.replace("_", " ").title(),
            "value": value,
            "status": health_status(value),
            "description": METRIC_DESCRIPTIONS[name],
        })
    return report
