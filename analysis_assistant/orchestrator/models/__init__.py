"""Pydantic models shared by the orchestrator stages."""

from analysis_assistant.orchestrator.models.classification import (
    MUTATING_ACTIONS,
    Classification,
    ContinuityResult,
    ConversationType,
    RequestAction,
    TargetStep,
    TurnContext,
)
from analysis_assistant.orchestrator.models.gate import (
    ActionOutcome,
    ConfirmationReply,
    GateDecision,
    GateState,
    PendingProposal,
)

__all__ = [
    "MUTATING_ACTIONS",
    "ActionOutcome",
    "Classification",
    "ConfirmationReply",
    "ContinuityResult",
    "ConversationType",
    "GateDecision",
    "GateState",
    "PendingProposal",
    "RequestAction",
    "TargetStep",
    "TurnContext",
]
