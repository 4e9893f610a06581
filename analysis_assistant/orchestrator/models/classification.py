"""Classification models for user requests and conversation continuity.

These Pydantic models carry the inferred (step, action, confidence)
triple for a user message and the continuity verdict for a turn.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TargetStep(str, Enum):
    """Workflow step a request is about, or unknown."""

    analyze_project = "analyze_project"
    analyze_actors = "analyze_actors"
    analyze_deployment = "analyze_deployment"
    implement_deployment_script = "implement_deployment_script"
    verify_deployment_script = "verify_deployment_script"
    unknown = "unknown"


class RequestAction(str, Enum):
    """What the user wants done with the step."""

    refine = "refine"
    clarify = "clarify"
    update = "update"
    run = "run"
    unknown = "unknown"


def clamp_confidence(value: Any) -> float:
    """Coerce a model-reported confidence into [0, 1]; garbage becomes 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return min(1.0, max(0.0, number))


# Actions that change remote workflow state and therefore need confirmation.
MUTATING_ACTIONS = frozenset({
    RequestAction.refine,
    RequestAction.update,
    RequestAction.run,
})


class Classification(BaseModel):
    """Inferred intent of one user message.

    Attributes:
        step: Workflow step the message targets.
        action: Requested action.
        confidence: Self-reported model confidence, clamped to [0, 1].
        explanation: Short reasoning from the classifier.
        is_actionable: Whether the request can be executed as stated.
        needs_guidance: The user needs help deciding what to ask for;
            answered directly, never proposed.
        context_summary: What context the answer was based on.
    """

    model_config = ConfigDict(from_attributes=True)

    step: TargetStep = TargetStep.unknown
    action: RequestAction = RequestAction.unknown
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    explanation: str = ""
    is_actionable: bool = False
    needs_guidance: bool = False
    context_summary: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_confidence(value)

    @classmethod
    def unknown(cls, explanation: str = "") -> "Classification":
        """The classification used whenever the classifier cannot decide."""
        return cls(explanation=explanation)

    @property
    def is_mutating(self) -> bool:
        return self.action in MUTATING_ACTIONS


class ConversationType(str, Enum):
    """Continuity verdict."""

    new_conversation = "new_conversation"
    continue_conversation = "continue_conversation"


class ContinuityResult(BaseModel):
    """Output of the continuity detector."""

    type: ConversationType = ConversationType.continue_conversation
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    explanation: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_confidence(value)


class TurnContext(BaseModel):
    """What the orchestrator knows about where the user is asking from."""

    project_name: str = "Unknown"
    section: Optional[str] = None
    current_step: Optional[str] = None
