"""
Decision engine for guided story building.

Drives a story session through premise selection and character configuration:
each step asks the provider for options, applies the user's choice to the story
document, rescores story health and records the decision. Provider failures never
stop the flow; built-in options and placeholder content are used instead.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from config_manager import EngineConfig
from data_models import (
    Character,
    CharacterRole,
    DecisionImpact,
    DecisionOption,
    DecisionPoint,
    DecisionRecord,
    DecisionType,
    Physiology,
    Premise,
    Psychology,
    Scene,
    ScenePerspectives,
    Sociology,
    StoryProject,
    ImaginatorError,
    ValidationError,
    attach_character,
    attach_scene,
    create_story,
    next_scene_position,
    replace_premise,
)
from generation_service import PromptSpec, ProviderError, TextProvider
from health_scorer import refresh_health
from prompts import character_options_prompt, premise_options_prompt, scene_prompt
from response_parsing import parse_decision_options, parse_scene
from story_repository import PersistenceError, StoryRepository
from story_session import AWAITING_STATES, EngineState, StorySession, TransitionResult

logger = logging.getLogger(__name__)

PREMISE_DELIMITER = " leads to "
IMPACT_TO_DIMENSION = 20
OPENING_SCENE_CONTEXT = "Opening scene that establishes the world and introduces the protagonist"
# state derived from a stored document -> saved session states that agree with it
RESUMABLE_STATES = {
    EngineState.IDLE: (EngineState.IDLE, EngineState.AWAITING_PREMISE_CHOICE),
    EngineState.AWAITING_CHARACTER_CHOICE: (EngineState.AWAITING_CHARACTER_CHOICE,),
    EngineState.RESOLVED: (EngineState.RESOLVED,),
}
PREMISE_RECOMMENDATION = (
    "Choose the premise that resonates most deeply with your vision "
    "and offers the richest conflict potential."
)

FALLBACK_PREMISE_OPTIONS = (
    DecisionOption(
        id="premise_1",
        title="Compassion leads to redemption",
        description="A story exploring how genuine empathy can transform both giver and receiver",
        impact=DecisionImpact(premise=90, character=85, structure=80, theme=95),
        analysis="This premise offers rich character development opportunities and universal appeal",
        examples=("Les Misérables", "A Christmas Carol"),
    ),
    DecisionOption(
        id="premise_2",
        title="Obsession leads to destruction",
        description="A cautionary tale about the dangers of single-minded pursuit",
        impact=DecisionImpact(premise=95, character=90, structure=85, theme=88),
        analysis="Creates natural escalation and tragic arc with clear stakes",
        examples=("Moby Dick", "Black Swan"),
    ),
)

FALLBACK_CHARACTER_OPTIONS = (
    DecisionOption(
        id="character_1",
        title="Classic opposition",
        description=(
            "A protagonist who embodies the premise set against an antagonist "
            "who lives its opposite"
        ),
        impact=DecisionImpact(premise=85, character=90, structure=80, theme=85),
        analysis="Direct opposition keeps the premise under test in every scene",
        examples=("The Dark Knight", "Heat"),
    ),
)


def premise_from_option(option: DecisionOption) -> Premise:
    """Derive a premise from a premise-selection option.

    "Greed leads to isolation" gives trait "Greed" and consequence "isolation";
    a title without the delimiter becomes the trait with an empty consequence.
    Impact scores (0-100) become premise dimensions (0-5).
    """
    parts = option.title.split(PREMISE_DELIMITER)
    return Premise(
        id=option.id,
        statement=option.title,
        trait=parts[0],
        consequence=parts[1] if len(parts) > 1 else "",
        strength=option.impact.premise / IMPACT_TO_DIMENSION,
        provability=option.impact.structure / IMPACT_TO_DIMENSION,
        conflict_potential=option.impact.character / IMPACT_TO_DIMENSION,
        philosophical_depth=option.impact.theme / IMPACT_TO_DIMENSION,
        examples=list(option.examples),
    )


def default_cast(premise_statement: str, stamp: int) -> Tuple[Character, Character]:
    """Build the protagonist/antagonist pair added on character configuration"""
    protagonist = Character(
        id=f"char_{stamp}_protagonist",
        name="Alex Morgan",
        role=CharacterRole.PROTAGONIST,
        physiology=Physiology(
            age=32,
            appearance="Athletic build, determined eyes",
            distinguishing_features=["Scar on left hand", "Always wears a silver watch"],
        ),
        sociology=Sociology(
            background="Middle-class upbringing",
            occupation="Detective",
            education="Criminal Justice degree",
            relationships=["Partner Sarah", "Mentor Captain Rodriguez"],
        ),
        psychology=Psychology(
            motivation="Seeking justice for the innocent",
            fears=["Failing those who depend on them", "Losing control"],
            flaws=["Overly trusting", "Stubborn"],
            strengths=["Empathetic", "Persistent", "Intuitive"],
            moral_code="Everyone deserves protection",
        ),
        premise=premise_statement,
    )
    antagonist = Character(
        id=f"char_{stamp}_antagonist",
        name="Marcus Vale",
        role=CharacterRole.ANTAGONIST,
        physiology=Physiology(
            age=45,
            appearance="Imposing presence, cold eyes",
            distinguishing_features=["Expensive suits", "Calculating smile"],
        ),
        sociology=Sociology(
            background="Wealthy family",
            occupation="Corporate Executive",
            education="MBA from prestigious university",
            relationships=["Board members", "Political connections"],
        ),
        psychology=Psychology(
            motivation="Maintaining power and control",
            fears=["Exposure", "Loss of status"],
            flaws=["Arrogant", "Ruthless"],
            strengths=["Strategic mind", "Charismatic", "Resourceful"],
            moral_code="Success justifies any means",
        ),
        premise=f"The opposite of {premise_statement}",
    )
    return protagonist, antagonist


def placeholder_scene(scene_id: str, position: int) -> Scene:
    """Scene used when the provider cannot produce one"""
    return Scene(
        id=scene_id,
        title=f"Scene {position}",
        content="Scene content will be generated here...",
        position=position,
        premise_advancement=5.0,
        conflict_level=5.0,
        perspectives=ScenePerspectives(
            objective="Objective view of the scene...",
            protagonist="How the protagonist experiences this scene...",
            antagonist="How the antagonist interprets these events...",
        ),
    )


def _new_decision_id() -> str:
    return f"decision_{uuid.uuid4().hex[:12]}"


def _character_decision(premise: Premise, options: List[DecisionOption]) -> DecisionPoint:
    return DecisionPoint(
        id=_new_decision_id(),
        type=DecisionType.CHARACTER_CONFIGURATION,
        context=f"Character configuration for premise: {premise.statement}",
        options=options,
    )


class DecisionEngine:
    """State machine that turns user choices into story document changes"""

    def __init__(self, provider: TextProvider,
                 repository: Optional[StoryRepository] = None,
                 config: Optional[EngineConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.provider = provider
        self.repository = repository
        self.config = config or EngineConfig()
        self._clock = clock
        self._transition_callbacks: List[Callable] = []

    def add_transition_callback(self, callback: Callable[[StorySession, TransitionResult], None]):
        """Add callback invoked after every completed transition"""
        self._transition_callbacks.append(callback)

    def new_session(self, title: str, user_id: str) -> StorySession:
        """Start a session on a new, empty story"""
        project = create_story(title, user_id)
        refresh_health(project)
        return StorySession(project=project)

    def resume(self, project: StoryProject,
               saved_state: Optional[Dict[str, Any]] = None) -> StorySession:
        """Rebuild a session for a stored story from what the document contains.

        A saved session state is restored when it agrees with the document, so a
        postponed decision comes back with the options originally offered.
        """
        refresh_health(project)
        if not project.premise.is_set:
            session = StorySession(project=project)
        elif not project.characters:
            session = StorySession(
                project=project,
                state=EngineState.AWAITING_CHARACTER_CHOICE,
                current_decision=_character_decision(project.premise, list(FALLBACK_CHARACTER_OPTIONS)),
            )
        else:
            session = StorySession(project=project, state=EngineState.RESOLVED)

        if saved_state:
            self._restore(session, saved_state)
        return session

    def _restore(self, session: StorySession, saved_state: Dict[str, Any]):
        try:
            saved = EngineState(saved_state.get("state"))
        except ValueError:
            logger.warning(f"Ignoring saved session of story {session.project.id}: unknown state")
            return
        if saved not in RESUMABLE_STATES[session.state]:
            logger.warning(
                f"Ignoring saved session of story {session.project.id}: "
                f"{saved.value} does not match the stored document"
            )
            return
        try:
            session.import_state(saved_state)
        except (ImaginatorError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring saved session of story {session.project.id}: {e}")

    async def begin(self, session: StorySession, concept: str,
                    timeout: Optional[float] = None) -> TransitionResult:
        """Offer premise options for a story concept"""
        concept = (concept or "").strip()
        if not concept:
            raise ValidationError("Story concept cannot be empty")

        with session.claim("begin"):
            if session.state != EngineState.IDLE:
                raise ValidationError(f"Cannot begin from state {session.state.value}")

            result = TransitionResult("begin", session.state, session.state, datetime.now())
            logger.info(f"Requesting premise options for story {session.project.id}")

            text = await self._request(
                PromptSpec(premise_options_prompt(concept), expect_json=True), timeout, result
            )
            options = self._options_or_fallback(text, "premise", FALLBACK_PREMISE_OPTIONS, result)

            session.current_decision = DecisionPoint(
                id=_new_decision_id(),
                type=DecisionType.PREMISE_SELECTION,
                context=f"Premise selection for concept: {concept}",
                options=options,
                recommendation=PREMISE_RECOMMENDATION,
            )
            await self._complete(session, result, EngineState.AWAITING_PREMISE_CHOICE)
            return result

    async def choose(self, session: StorySession, option: Union[str, DecisionOption],
                     timeout: Optional[float] = None) -> TransitionResult:
        """Apply one option of the current decision to the story"""
        with session.claim("choose"):
            if session.state not in AWAITING_STATES or session.current_decision is None:
                raise ValidationError(f"No decision to resolve in state {session.state.value}")

            decision = session.current_decision
            option_id = option if isinstance(option, str) else option.id
            chosen = decision.find_option(option_id)
            if chosen is None:
                raise ValidationError(f"Option {option_id} is not part of decision {decision.id}")

            result = TransitionResult("choose", session.state, session.state, datetime.now())
            logger.info(f"Resolving {decision.type.value} with option '{chosen.title}'")

            if session.state == EngineState.AWAITING_PREMISE_CHOICE:
                new_state = await self._apply_premise_choice(session, chosen, timeout, result)
            else:
                new_state = await self._apply_character_choice(session, timeout, result)

            record = DecisionRecord.for_choice(session.project, decision, chosen)
            session.decision_history.append(record)
            await self._complete(session, result, new_state)
            await self._persist(session, record, timeout)
            return result

    async def _apply_premise_choice(self, session: StorySession, chosen: DecisionOption,
                                    timeout: Optional[float], result: TransitionResult) -> EngineState:
        premise = premise_from_option(chosen)
        text = await self._request(
            PromptSpec(character_options_prompt(premise), expect_json=True), timeout, result
        )
        options = self._options_or_fallback(text, "character", FALLBACK_CHARACTER_OPTIONS, result)

        # No suspension points below: the document changes all at once
        replace_premise(session.project, premise)
        refresh_health(session.project)
        session.current_decision = _character_decision(premise, options)
        return EngineState.AWAITING_CHARACTER_CHOICE

    async def _apply_character_choice(self, session: StorySession, timeout: Optional[float],
                                      result: TransitionResult) -> EngineState:
        project = session.project
        for role in (CharacterRole.PROTAGONIST, CharacterRole.ANTAGONIST):
            if project.find_character(role):
                raise ValidationError(f"Story already has a {role.value}")

        stamp = int(self._clock() * 1000)
        protagonist, antagonist = default_cast(project.premise.statement, stamp)
        position = next_scene_position(project)
        scene_id = f"scene_{stamp}"

        text = await self._request(
            PromptSpec(
                scene_prompt(project.premise, [protagonist, antagonist], OPENING_SCENE_CONTEXT, position),
                expect_json=True,
            ),
            timeout,
            result,
        )
        scene = None
        if text is not None:
            parsed = parse_scene(text, scene_id, position, [*project.characters, protagonist, antagonist])
            if parsed.ok:
                scene = parsed.value
            else:
                self._note_failure(result, "scene", parsed.error)
        if scene is None:
            scene = placeholder_scene(scene_id, position)

        attach_character(project, protagonist)
        attach_character(project, antagonist)
        attach_scene(project, scene)
        refresh_health(project)
        session.current_decision = None
        return EngineState.RESOLVED

    async def _request(self, spec: PromptSpec, timeout: Optional[float],
                       result: TransitionResult) -> Optional[str]:
        """Call the provider; any failure is recorded and reported as None"""
        limit = timeout if timeout is not None else self.config.provider_timeout
        try:
            return await asyncio.wait_for(self.provider.generate(spec), timeout=limit)
        except asyncio.TimeoutError:
            self._note_failure(result, "request", ProviderError(f"Provider timed out after {limit}s"))
        except ProviderError as e:
            self._note_failure(result, "request", e)
        except Exception as e:
            self._note_failure(result, "request", ProviderError(f"Provider failed: {e}"))
        return None

    def _options_or_fallback(self, text: Optional[str], kind: str,
                             fallback: Tuple[DecisionOption, ...],
                             result: TransitionResult) -> List[DecisionOption]:
        if text is not None:
            parsed = parse_decision_options(text, id_prefix=kind)
            if parsed.ok:
                return parsed.value
            self._note_failure(result, f"{kind} options", parsed.error)
        logger.warning(f"Using built-in {kind} options")
        return list(fallback)

    @staticmethod
    def _note_failure(result: TransitionResult, what: str, error: ProviderError):
        logger.warning(f"Provider {what} failed, degrading: {error}")
        result.degraded = True
        result.provider_errors.append(str(error))

    async def _complete(self, session: StorySession, result: TransitionResult, new_state: EngineState):
        session.state = new_state
        result.to_state = new_state
        result.decision = session.current_decision
        result.end_time = datetime.now()
        session.last_result = result
        logger.info(
            f"Story {session.project.id}: {result.from_state.value} -> {new_state.value}"
            f"{' (degraded)' if result.degraded else ''}"
        )

        for callback in self._transition_callbacks:
            try:
                await self._call_async_or_sync(callback, session, result)
            except Exception as e:
                logger.warning(f"Transition callback failed: {e}")

    async def _persist(self, session: StorySession, record: DecisionRecord, timeout: Optional[float]):
        """Log the decision (best effort) and save the document (must succeed)"""
        if self.repository is None:
            return

        try:
            await asyncio.wait_for(
                self.repository.append_decision_history(record),
                timeout=self.config.history_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Decision history write timed out for {record.id}")
        except Exception as e:
            logger.warning(f"Failed to record decision {record.id}: {e}")

        if not self.config.persist_after_each_decision:
            return

        limit = timeout if timeout is not None else self.config.provider_timeout
        try:
            await asyncio.wait_for(self.repository.save(session.project), timeout=limit)
        except asyncio.TimeoutError as e:
            logger.error(f"Saving story {session.project.id} timed out")
            raise PersistenceError(f"Saving story {session.project.id} timed out") from e
        except PersistenceError:
            logger.error(f"Saving story {session.project.id} failed")
            raise
        except Exception as e:
            logger.error(f"Saving story {session.project.id} failed: {e}")
            raise PersistenceError(f"Failed to save story {session.project.id}: {e}") from e

    async def _call_async_or_sync(self, func: Callable, *args, **kwargs):
        """Call function whether it's async or sync"""
        if asyncio.iscoroutinefunction(func):
            return await func(*args, **kwargs)
        return func(*args, **kwargs)
