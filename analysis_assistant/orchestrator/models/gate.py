"""Confirmation gate models.

A mutating request moves through:

    AWAITING_REQUEST -> PENDING_CONFIRMATION -> EXECUTING -> COMPLETED
                                                          -> COMPLETED_WITH_ERROR
                                             -> REJECTED
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from analysis_assistant.orchestrator.models.classification import Classification


class GateState(str, Enum):
    """States of the propose, confirm, execute protocol."""

    AWAITING_REQUEST = "awaiting_request"
    PENDING_CONFIRMATION = "pending_confirmation"
    EXECUTING = "executing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERROR = "completed_with_error"
    REJECTED = "rejected"


class ConfirmationReply(str, Enum):
    """How a user answered a pending proposal."""

    positive = "positive"
    negative = "negative"
    none = "none"


class PendingProposal(BaseModel):
    """A proposal awaiting the user's yes or no.

    Rebuilt each turn from the latest assistant message whose
    ``expects_confirmation`` flag is set.
    """

    message_id: str
    classification: Classification
    checklist: Optional[str] = None


class ActionOutcome(BaseModel):
    """Result of a dispatch attempt."""

    attempted: bool = False
    succeeded: bool = False
    error: Optional[str] = None


class GateDecision(BaseModel):
    """Everything the composer and persistence need from the gate.

    Attributes:
        state: Final gate state for this turn.
        classification: Classification after dependency rewrite or
            rejection reset.
        checklist: Checklist text when one was generated this turn.
        dependency_note: Explanation added when the step was rewritten.
        outcome: Dispatch result when EXECUTING was reached.
    """

    state: GateState = GateState.AWAITING_REQUEST
    classification: Classification = Classification()
    checklist: Optional[str] = None
    dependency_note: Optional[str] = None
    outcome: ActionOutcome = ActionOutcome()

    @property
    def action_taken(self) -> bool:
        return self.state == GateState.COMPLETED and self.outcome.succeeded

    @property
    def expects_confirmation(self) -> bool:
        return self.state == GateState.PENDING_CONFIRMATION
