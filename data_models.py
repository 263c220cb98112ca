"""
Data models for The Imaginator story engine.
Story documents, their child entities, and the invariant-preserving mutators.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


class ImaginatorError(Exception):
    """Base exception for story engine errors"""
    pass


class ValidationError(ImaginatorError):
    """Raised when input fails validation; no mutation is applied"""
    pass


class CharacterRole(Enum):
    """Dramatic function a character serves"""
    PROTAGONIST = "protagonist"
    ANTAGONIST = "antagonist"
    MENTOR = "mentor"
    ALLY = "ally"
    THRESHOLD_GUARDIAN = "threshold_guardian"


class SceneFramework(Enum):
    """Story-structure theories a scene can be annotated against"""
    SAVE_THE_CAT = "save_the_cat"
    HERO_JOURNEY = "hero_journey"
    ARISTOTLE = "aristotle"
    EGRI = "egri"


class ExportFormat(Enum):
    """Target formats a finished story can be rendered into"""
    SCREENPLAY = "screenplay"
    NOVEL = "novel"
    STAGE_PLAY = "stage_play"
    TV_SERIES = "tv_series"
    GAME = "game"

    @classmethod
    def parse(cls, value) -> "ExportFormat":
        """Accept an ExportFormat or its name, with hyphens or underscores"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_"))
        except ValueError:
            choices = ", ".join(f.value for f in cls)
            raise ValidationError(f"Unknown export format '{value}' (expected one of: {choices})") from None


class DecisionType(Enum):
    """Stage a decision point belongs to"""
    PREMISE_SELECTION = "premise_selection"
    CHARACTER_CONFIGURATION = "character_configuration"
    SCENE_CHOICE = "scene_choice"
    PLOT_STRUCTURE = "plot_structure"


# Characters that may appear at most once per story
UNIQUE_ROLES = (CharacterRole.PROTAGONIST, CharacterRole.ANTAGONIST)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return datetime.now()


@dataclass
class Premise:
    """The controlling idea a story is built to prove.

    The four dimensions are stored on a 0-5 scale: a decision impact score
    (0-100) divided by 20.
    """
    id: str = ""
    statement: str = ""
    trait: str = ""
    consequence: str = ""
    strength: float = 0.0
    provability: float = 0.0
    conflict_potential: float = 0.0
    philosophical_depth: float = 0.0
    examples: List[str] = field(default_factory=list)

    @property
    def is_set(self) -> bool:
        """Check whether a premise decision has been resolved"""
        return bool(self.statement)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "statement": self.statement,
            "trait": self.trait,
            "consequence": self.consequence,
            "strength": self.strength,
            "provability": self.provability,
            "conflict_potential": self.conflict_potential,
            "philosophical_depth": self.philosophical_depth,
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Premise":
        return cls(
            id=data.get("id", ""),
            statement=data.get("statement", ""),
            trait=data.get("trait", ""),
            consequence=data.get("consequence", ""),
            strength=float(data.get("strength", 0)),
            provability=float(data.get("provability", 0)),
            conflict_potential=float(data.get("conflict_potential", 0)),
            philosophical_depth=float(data.get("philosophical_depth", 0)),
            examples=list(data.get("examples", [])),
        )


@dataclass
class Physiology:
    """Physical dimension of a character"""
    age: int = 0
    appearance: str = ""
    distinguishing_features: List[str] = field(default_factory=list)


@dataclass
class Sociology:
    """Social dimension of a character"""
    background: str = ""
    occupation: str = ""
    education: str = ""
    relationships: List[str] = field(default_factory=list)


@dataclass
class Psychology:
    """Psychological dimension of a character"""
    motivation: str = ""
    fears: List[str] = field(default_factory=list)
    flaws: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    moral_code: str = ""


@dataclass
class Character:
    """A three-dimensional story participant"""
    id: str
    name: str
    role: CharacterRole
    physiology: Physiology = field(default_factory=Physiology)
    sociology: Sociology = field(default_factory=Sociology)
    psychology: Psychology = field(default_factory=Psychology)
    premise: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "physiology": {
                "age": self.physiology.age,
                "appearance": self.physiology.appearance,
                "distinguishing_features": list(self.physiology.distinguishing_features),
            },
            "sociology": {
                "background": self.sociology.background,
                "occupation": self.sociology.occupation,
                "education": self.sociology.education,
                "relationships": list(self.sociology.relationships),
            },
            "psychology": {
                "motivation": self.psychology.motivation,
                "fears": list(self.psychology.fears),
                "flaws": list(self.psychology.flaws),
                "strengths": list(self.psychology.strengths),
                "moral_code": self.psychology.moral_code,
            },
            "premise": self.premise,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Character":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            role=CharacterRole(data["role"]),
            physiology=Physiology(**data.get("physiology", {})),
            sociology=Sociology(**data.get("sociology", {})),
            psychology=Psychology(**data.get("psychology", {})),
            premise=data.get("premise", ""),
        )


@dataclass
class ScenePerspectives:
    """The three renderings of a scene's events; empty until generated"""
    objective: str = ""
    protagonist: str = ""
    antagonist: str = ""


@dataclass
class Scene:
    """An ordered narrative unit"""
    id: str
    title: str
    content: str
    position: int
    framework_beats: Dict[SceneFramework, Optional[str]] = field(default_factory=dict)
    premise_advancement: float = 0.0
    conflict_level: float = 0.0
    character_developments: Dict[str, str] = field(default_factory=dict)
    perspectives: ScenePerspectives = field(default_factory=ScenePerspectives)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "position": self.position,
            "framework_beats": {fw.value: beat for fw, beat in self.framework_beats.items()},
            "premise_advancement": self.premise_advancement,
            "conflict_level": self.conflict_level,
            "character_developments": dict(self.character_developments),
            "perspectives": {
                "objective": self.perspectives.objective,
                "protagonist": self.perspectives.protagonist,
                "antagonist": self.perspectives.antagonist,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            position=int(data["position"]),
            framework_beats={
                SceneFramework(name): beat
                for name, beat in data.get("framework_beats", {}).items()
            },
            premise_advancement=float(data.get("premise_advancement", 0)),
            conflict_level=float(data.get("conflict_level", 0)),
            character_developments=dict(data.get("character_developments", {})),
            perspectives=ScenePerspectives(**data.get("perspectives", {})),
        )


@dataclass
class StoryHealth:
    """Derived 0-100 quality scores; overall is the mean of the six dimensions"""
    premise_clarity: float = 0.0
    structural_integrity: float = 0.0
    character_depth: float = 0.0
    pacing_effectiveness: float = 0.0
    conflict_power: float = 0.0
    thematic_unity: float = 0.0
    overall: float = 0.0

    def dimensions(self) -> Dict[str, float]:
        """Get the six dimension scores without the overall score"""
        return {
            "premise_clarity": self.premise_clarity,
            "structural_integrity": self.structural_integrity,
            "character_depth": self.character_depth,
            "pacing_effectiveness": self.pacing_effectiveness,
            "conflict_power": self.conflict_power,
            "thematic_unity": self.thematic_unity,
        }

    def to_dict(self) -> Dict[str, float]:
        return {**self.dimensions(), "overall": self.overall}


@dataclass
class FrameworkCompliance:
    """Per-framework adherence scores, populated outside the engine"""
    egri: float = 0.0
    aristotle: float = 0.0
    save_the_cat: float = 0.0
    hero_journey: float = 0.0


@dataclass
class StoryStructure:
    """Target format and shape of the work"""
    format: ExportFormat = ExportFormat.SCREENPLAY
    acts: int = 3
    total_scenes: int = 0


@dataclass
class StoryProject:
    """Aggregate root of a story: premise, cast, scenes and derived metrics"""
    id: str
    title: str
    user_id: str = ""
    premise: Premise = field(default_factory=Premise)
    characters: List[Character] = field(default_factory=list)
    scenes: List[Scene] = field(default_factory=list)
    structure: StoryStructure = field(default_factory=StoryStructure)
    health: StoryHealth = field(default_factory=StoryHealth)
    frameworks: FrameworkCompliance = field(default_factory=FrameworkCompliance)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        """Refresh the update timestamp"""
        self.updated_at = datetime.now()

    def find_character(self, role: CharacterRole) -> Optional[Character]:
        """Get the first character holding a role"""
        return next((c for c in self.characters if c.role == role), None)

    def to_dict(self, include_children: bool = True) -> Dict[str, Any]:
        """Convert the document to a JSON-safe dictionary"""
        data = {
            "id": self.id,
            "title": self.title,
            "user_id": self.user_id,
            "premise": self.premise.to_dict(),
            "structure": {
                "format": self.structure.format.value,
                "acts": self.structure.acts,
                "total_scenes": self.structure.total_scenes,
            },
            "health": self.health.to_dict(),
            "frameworks": {
                "egri": self.frameworks.egri,
                "aristotle": self.frameworks.aristotle,
                "save_the_cat": self.frameworks.save_the_cat,
                "hero_journey": self.frameworks.hero_journey,
            },
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_children:
            data["characters"] = [c.to_dict() for c in self.characters]
            data["scenes"] = [s.to_dict() for s in self.scenes]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryProject":
        """Rebuild a document from its dictionary form"""
        structure = data.get("structure", {})
        scenes = sorted(
            (Scene.from_dict(s) for s in data.get("scenes", [])),
            key=lambda s: s.position,
        )
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            user_id=data.get("user_id", ""),
            premise=Premise.from_dict(data.get("premise", {})),
            characters=[Character.from_dict(c) for c in data.get("characters", [])],
            scenes=scenes,
            structure=StoryStructure(
                format=ExportFormat(structure.get("format", ExportFormat.SCREENPLAY.value)),
                acts=structure.get("acts", 3),
                total_scenes=structure.get("total_scenes", 0),
            ),
            health=StoryHealth(**data.get("health", {})),
            frameworks=FrameworkCompliance(**data.get("frameworks", {})),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class DecisionImpact:
    """How strongly an option serves each story dimension, 0-100"""
    premise: float
    character: float
    structure: float
    theme: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "premise": self.premise,
            "character": self.character,
            "structure": self.structure,
            "theme": self.theme,
        }


@dataclass(frozen=True)
class DecisionOption:
    """One scored branch of a decision point"""
    id: str
    title: str
    description: str
    impact: DecisionImpact
    analysis: str = ""
    examples: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "impact": self.impact.to_dict(),
            "analysis": self.analysis,
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionOption":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            impact=DecisionImpact(**data["impact"]),
            analysis=data.get("analysis", ""),
            examples=tuple(data.get("examples", [])),
        )


@dataclass
class DecisionPoint:
    """A branching choice offered to the user; never part of the document"""
    id: str
    type: DecisionType
    context: str
    options: List[DecisionOption] = field(default_factory=list)
    recommendation: Optional[str] = None

    def find_option(self, option_id: str) -> Optional[DecisionOption]:
        """Get an option by id"""
        return next((o for o in self.options if o.id == option_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "context": self.context,
            "options": [o.to_dict() for o in self.options],
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionPoint":
        return cls(
            id=data["id"],
            type=DecisionType(data["type"]),
            context=data.get("context", ""),
            options=[DecisionOption.from_dict(o) for o in data.get("options", [])],
            recommendation=data.get("recommendation"),
        )


@dataclass
class DecisionRecord:
    """A resolved decision as kept in the history log"""
    id: str
    story_id: str
    user_id: str
    decision_type: DecisionType
    context: str
    chosen_option_id: str
    chosen_option_title: str
    chosen_option_description: str
    impact: DecisionImpact
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def for_choice(cls, project: StoryProject, decision: DecisionPoint,
                   option: DecisionOption) -> "DecisionRecord":
        """Create a history record for an option chosen on a decision point"""
        return cls(
            id=f"decision_{uuid.uuid4().hex[:12]}",
            story_id=project.id,
            user_id=project.user_id,
            decision_type=decision.type,
            context=decision.context,
            chosen_option_id=option.id,
            chosen_option_title=option.title,
            chosen_option_description=option.description,
            impact=option.impact,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "user_id": self.user_id,
            "decision_type": self.decision_type.value,
            "context": self.context,
            "chosen_option_id": self.chosen_option_id,
            "chosen_option_title": self.chosen_option_title,
            "chosen_option_description": self.chosen_option_description,
            "impact": self.impact.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionRecord":
        return cls(
            id=data["id"],
            story_id=data["story_id"],
            user_id=data.get("user_id", ""),
            decision_type=DecisionType(data["decision_type"]),
            context=data.get("context", ""),
            chosen_option_id=data["chosen_option_id"],
            chosen_option_title=data.get("chosen_option_title", ""),
            chosen_option_description=data.get("chosen_option_description", ""),
            impact=DecisionImpact(**data["impact"]),
            created_at=_parse_datetime(data.get("created_at")),
        )


# Document mutators. Each one validates before touching the document and
# refreshes the update timestamp on success.

def create_story(title: str, user_id: str = "") -> StoryProject:
    """Create an empty story document with a blank premise"""
    if not title or not title.strip():
        raise ValidationError("Story title cannot be empty")
    now = datetime.now()
    return StoryProject(
        id=f"project_{uuid.uuid4().hex[:12]}",
        title=title.strip(),
        user_id=user_id,
        created_at=now,
        updated_at=now,
    )


def replace_premise(project: StoryProject, premise: Premise) -> StoryProject:
    """Replace the story's controlling premise"""
    if not premise.statement.strip():
        raise ValidationError("Premise statement cannot be empty")
    project.premise = premise
    project.touch()
    return project


def attach_character(project: StoryProject, character: Character) -> StoryProject:
    """Append a character, keeping protagonist and antagonist unique"""
    if any(c.id == character.id for c in project.characters):
        raise ValidationError(f"Character id already present: {character.id}")
    if character.role in UNIQUE_ROLES and project.find_character(character.role):
        raise ValidationError(f"Story already has a {character.role.value}")
    project.characters.append(character)
    project.touch()
    return project


def _check_position(project: StoryProject, position: int, ignore_id: Optional[str] = None):
    if position < 1:
        raise ValidationError(f"Scene position must be 1 or greater, got {position}")
    for scene in project.scenes:
        if scene.id != ignore_id and scene.position == position:
            raise ValidationError(f"Scene position {position} is already used by '{scene.title}'")


def attach_scene(project: StoryProject, scene: Scene) -> StoryProject:
    """Insert a scene in position order; positions are unique per story"""
    _check_position(project, scene.position)
    project.scenes.append(scene)
    project.scenes.sort(key=lambda s: s.position)
    project.structure.total_scenes = len(project.scenes)
    project.touch()
    return project


def update_character(project: StoryProject, character_id: str, **changes) -> StoryProject:
    """Apply a partial update to a character"""
    for index, character in enumerate(project.characters):
        if character.id == character_id:
            break
    else:
        raise ValidationError(f"Unknown character: {character_id}")

    updated = replace(character, **changes)
    if updated.role != character.role and updated.role in UNIQUE_ROLES:
        if project.find_character(updated.role):
            raise ValidationError(f"Story already has a {updated.role.value}")
    project.characters[index] = updated
    project.touch()
    return project


def update_scene(project: StoryProject, scene_id: str, **changes) -> StoryProject:
    """Apply a partial update to a scene, re-checking its position"""
    for index, scene in enumerate(project.scenes):
        if scene.id == scene_id:
            break
    else:
        raise ValidationError(f"Unknown scene: {scene_id}")

    updated = replace(scene, **changes)
    if updated.position != scene.position:
        _check_position(project, updated.position, ignore_id=scene_id)
    project.scenes[index] = updated
    project.scenes.sort(key=lambda s: s.position)
    project.touch()
    return project


def next_scene_position(project: StoryProject) -> int:
    """Get the position following the last scene"""
    return max((s.position for s in project.scenes), default=0) + 1
