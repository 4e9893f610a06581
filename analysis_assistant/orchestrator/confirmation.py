"""Confirmation gate and action dispatcher.

Mutating requests follow a propose, confirm, execute protocol:

1. A confident, actionable request is turned into a checklist and the
   user is asked to confirm (PENDING_CONFIRMATION). The assistant
   message carrying the question is stored with ``expects_confirmation``.
2. On the next turn, only if that flag is set, the reply is read with
   keyword heuristics. A negative reply rejects the proposal and zeroes
   its confidence. A positive one executes it. Anything else is a fresh
   request.
3. Execution dispatches the checklist the user confirmed to the workflow
   engine once. It is only regenerated when the stored proposal has no
   checklist or the step changed since it was shown. A failed dispatch
   is reported as COMPLETED_WITH_ERROR and never retried.

Dispatch happens only when confidence meets the threshold, the proposal
is actionable, a positive reply arrived, and no rejection was seen.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from analysis_assistant.config import GateConfig
from analysis_assistant.errors import DispatchError
from analysis_assistant.orchestrator import checklist as checklist_generator
from analysis_assistant.orchestrator.intent_classifier import apply_dependency_check
from analysis_assistant.orchestrator.models import (
    ActionOutcome,
    Classification,
    ConfirmationReply,
    GateDecision,
    GateState,
    PendingProposal,
    TargetStep,
    TurnContext,
)
from analysis_assistant.orchestrator.prompts import CONFIRMATION_QUESTION
from analysis_assistant.services.llm_client import Completer

logger = logging.getLogger(__name__)

Dispatcher = Callable[[str, str, str], Awaitable[Any]]
DependencyProbe = Callable[[], Awaitable[bool]]


def qualifies_for_proposal(classification: Classification, threshold: float) -> bool:
    """Whether a classification may be proposed (and later executed)."""
    return (
        classification.confidence >= threshold
        and classification.is_actionable
        and classification.is_mutating
        and classification.step != TargetStep.unknown
        and not classification.needs_guidance
    )


def rejected(classification: Classification) -> Classification:
    """Copy of a classification that can no longer execute."""
    return classification.model_copy(update={
        "confidence": 0.0,
        "is_actionable": False,
    })


def confirmed_checklist(proposal_text: str | None) -> str | None:
    """Checklist part of a stored proposal message, without the question."""
    if not proposal_text:
        return None
    text = proposal_text.rstrip()
    if text.endswith(CONFIRMATION_QUESTION):
        text = text[: -len(CONFIRMATION_QUESTION)].rstrip()
    return text or None


class ConfirmationGate:
    """Runs one turn of the confirmation protocol.

    Args:
        completer: Completion service for checklist synthesis.
        dispatcher: ``(submission_id, step, user_prompt)`` coroutine that
            triggers the remote step. Raises DispatchError on failure.
        config: Thresholds and preview length.
    """

    def __init__(
        self,
        completer: Completer,
        dispatcher: Dispatcher,
        config: GateConfig | None = None,
    ) -> None:
        self._completer = completer
        self._dispatch = dispatcher
        self._config = config or GateConfig()

    async def evaluate(
        self,
        submission_id: str,
        classification: Classification,
        messages: list[dict[str, str]],
        context: TurnContext,
        pending: PendingProposal | None = None,
        reply: ConfirmationReply = ConfirmationReply.none,
        dependency_probe: DependencyProbe | None = None,
        dependency_note: str | None = None,
        section_preview: str | None = None,
    ) -> GateDecision:
        """Decide the gate state for this turn and dispatch if confirmed.

        Args:
            submission_id: Submission UUID.
            classification: Classification of the latest message. Ignored
                when the turn is a keyword reply to ``pending``.
            messages: Whole conversation, oldest first.
            context: Turn context.
            pending: Open proposal from the previous assistant message.
            reply: Keyword reading of the latest message.
            dependency_probe: Re-checks deployment instructions before
                executing.
            dependency_note: Note from the dependency check of a fresh
                request.
            section_preview: Current section text for the checklist.

        Returns:
            GateDecision.
        """
        if pending is not None and reply == ConfirmationReply.negative:
            logger.info("Proposal %s rejected", pending.message_id)
            return GateDecision(
                state=GateState.REJECTED,
                classification=rejected(pending.classification),
            )

        if pending is not None and reply == ConfirmationReply.positive:
            return await self._execute(
                submission_id, pending, messages, context,
                dependency_probe, section_preview,
            )

        threshold = self._config.dispatch_confidence_threshold
        if not qualifies_for_proposal(classification, threshold):
            return GateDecision(
                state=GateState.AWAITING_REQUEST,
                classification=classification,
                dependency_note=dependency_note,
            )

        checklist = await checklist_generator.generate(
            messages,
            context,
            self._completer,
            step=classification.step.value,
            section_preview=section_preview,
            dependency_note=dependency_note,
            preview_chars=self._config.section_preview_chars,
        )
        return GateDecision(
            state=GateState.PENDING_CONFIRMATION,
            classification=classification,
            checklist=checklist,
            dependency_note=dependency_note,
        )

    async def _execute(
        self,
        submission_id: str,
        pending: PendingProposal,
        messages: list[dict[str, str]],
        context: TurnContext,
        dependency_probe: DependencyProbe | None,
        section_preview: str | None,
    ) -> GateDecision:
        proposal = pending.classification
        note = None
        if dependency_probe is not None:
            proposal, note = await apply_dependency_check(
                proposal, dependency_probe, self._config.dependency_check_threshold
            )

        if not qualifies_for_proposal(proposal, self._config.dispatch_confidence_threshold):
            logger.warning(
                "Confirmed proposal no longer qualifies (step=%s confidence=%.2f)",
                proposal.step.value, proposal.confidence,
            )
            return GateDecision(
                state=GateState.AWAITING_REQUEST,
                classification=proposal,
                dependency_note=note,
            )

        checklist = confirmed_checklist(pending.checklist)
        if checklist is None or proposal.step != pending.classification.step:
            checklist = await checklist_generator.generate(
                messages,
                context,
                self._completer,
                step=proposal.step.value,
                section_preview=section_preview,
                dependency_note=note,
                preview_chars=self._config.section_preview_chars,
            )

        logger.info(
            "Executing step=%s action=%s for submission %s",
            proposal.step.value, proposal.action.value, submission_id,
        )
        try:
            await self._dispatch(submission_id, proposal.step.value, checklist)
        except (DispatchError, asyncio.TimeoutError) as e:
            logger.warning("Dispatch failed, not retrying: %s", e)
            return GateDecision(
                state=GateState.COMPLETED_WITH_ERROR,
                classification=proposal,
                checklist=checklist,
                dependency_note=note,
                outcome=ActionOutcome(attempted=True, succeeded=False, error=str(e)),
            )

        return GateDecision(
            state=GateState.COMPLETED,
            classification=proposal,
            checklist=checklist,
            dependency_note=note,
            outcome=ActionOutcome(attempted=True, succeeded=True),
        )
