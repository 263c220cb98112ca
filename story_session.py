"""
Story session state for the decision engine.
A session scopes one story document, its decision state machine, and the
at-most-one in-flight resolution rule.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from data_models import DecisionPoint, DecisionRecord, ImaginatorError, StoryProject

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Position of a session in the guided decision flow"""
    IDLE = "idle"
    AWAITING_PREMISE_CHOICE = "awaiting_premise_choice"
    AWAITING_CHARACTER_CHOICE = "awaiting_character_choice"
    RESOLVED = "resolved"


AWAITING_STATES = (EngineState.AWAITING_PREMISE_CHOICE, EngineState.AWAITING_CHARACTER_CHOICE)


class BusyError(ImaginatorError):
    """Raised when an operation is already in flight for the same story"""
    def __init__(self, story_id: str, operation: Optional[str] = None):
        message = f"Story {story_id} is busy"
        if operation:
            message += f" ({operation} in progress)"
        super().__init__(message)
        self.story_id = story_id
        self.operation = operation


@dataclass
class TransitionResult:
    """Outcome of one begin or choose call"""
    operation: str
    from_state: EngineState
    to_state: EngineState
    start_time: datetime
    end_time: Optional[datetime] = None
    decision: Optional[DecisionPoint] = None
    degraded: bool = False
    provider_errors: List[str] = field(default_factory=list)

    @property
    def duration(self) -> Optional[float]:
        """Get transition duration in seconds"""
        if self.end_time and self.start_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


@dataclass
class StorySession:
    """Everything the engine knows about one story in progress"""
    project: StoryProject
    state: EngineState = EngineState.IDLE
    current_decision: Optional[DecisionPoint] = None
    decision_history: List[DecisionRecord] = field(default_factory=list)
    last_result: Optional[TransitionResult] = None
    _in_flight: Optional[str] = field(default=None, repr=False)

    @property
    def busy(self) -> bool:
        """Check whether an operation is in flight"""
        return self._in_flight is not None

    @property
    def degraded(self) -> bool:
        """Check whether the last transition used fallback content"""
        return bool(self.last_result and self.last_result.degraded)

    @contextmanager
    def claim(self, operation: str):
        """Hold the session for one operation, rejecting concurrent ones"""
        if self._in_flight is not None:
            logger.warning(f"Rejected {operation} on story {self.project.id}: {self._in_flight} in flight")
            raise BusyError(self.project.id, self._in_flight)
        self._in_flight = operation
        try:
            yield self
        finally:
            self._in_flight = None

    def export_state(self) -> Dict[str, Any]:
        """Export session state for persistence"""
        return {
            "story_id": self.project.id,
            "state": self.state.value,
            "current_decision": self.current_decision.to_dict() if self.current_decision else None,
            "decision_history": [record.to_dict() for record in self.decision_history],
        }

    def import_state(self, state_data: Dict[str, Any]):
        """Import session state exported for the same story"""
        if state_data.get("story_id") != self.project.id:
            raise ImaginatorError(
                f"Session state belongs to story {state_data.get('story_id')}, not {self.project.id}"
            )
        if self.busy:
            raise BusyError(self.project.id, self._in_flight)

        state = EngineState(state_data["state"])
        decision = state_data.get("current_decision")
        current_decision = DecisionPoint.from_dict(decision) if decision else None
        history = [DecisionRecord.from_dict(record) for record in state_data.get("decision_history", [])]
        if state in AWAITING_STATES and current_decision is None:
            raise ImaginatorError(f"Session state {state.value} has no decision point")

        self.state = state
        self.current_decision = current_decision
        self.decision_history = history
        logger.info(f"Session state imported for story {self.project.id}: {self.state.value}")
