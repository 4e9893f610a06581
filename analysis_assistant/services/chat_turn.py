"""Chat turn handling.

Runs one turn end to end so the HTTP route and the CLI share a single
code path:

    resolve submission -> conversation id -> open proposal lookup
    -> gather context + classify (concurrently; classification is skipped
       for a keyword reply to an open proposal)
    -> dependency check -> confirmation gate (checklist, dispatch)
    -> answer -> compose -> best-effort persistence and reconciliation

Only identifier resolution and request validation end a turn with an
error. Every other failure degrades: missing context is omitted, a
failed classification is ``unknown``, a failed dispatch is reported in
the answer, and persistence errors are logged after the reply is fixed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_assistant.config import AssistantSettings
from analysis_assistant.db.models import MessageRole
from analysis_assistant.errors import AssistantError, PersistenceError
from analysis_assistant.orchestrator.answer import (
    ACTION_STARTED_INSTRUCTION,
    DISPATCH_FAILED_INSTRUCTION,
    REJECTION_INSTRUCTION,
    generate_answer,
    summarize_context,
)
from analysis_assistant.orchestrator.composer import compose
from analysis_assistant.orchestrator.confirmation import ConfirmationGate
from analysis_assistant.orchestrator.continuity import resolve_conversation_id
from analysis_assistant.orchestrator.intent_classifier import (
    apply_dependency_check,
    classify,
)
from analysis_assistant.orchestrator.intent_detection import classify_reply
from analysis_assistant.orchestrator.models import (
    Classification,
    ConfirmationReply,
    GateDecision,
    GateState,
    PendingProposal,
    TurnContext,
)
from analysis_assistant.services.context_aggregator import (
    ContextAggregator,
    GatheredContext,
    resolve_step,
)
from analysis_assistant.services.conversation_store import ConversationStore
from analysis_assistant.services.llm_client import Completer
from analysis_assistant.services.step_records import (
    InvalidStepTransition,
    StepRecordService,
)
from analysis_assistant.services.submission_resolver import SubmissionResolver
from analysis_assistant.services.workflow_client import WorkflowClient

logger = logging.getLogger(__name__)


class TurnMessage(BaseModel):
    """One message as sent by the client."""

    role: Literal["user", "assistant"]
    content: str


class ChatTurnRequest(BaseModel):
    """Input of a chat turn.

    Attributes:
        messages: Conversation as the client sees it, latest last.
        submission_ref: Submission UUID or project id.
        section: UI section the user is in.
        analysis_step: Step shown in that section.
        conversation_id: Thread to continue; detected when omitted.
    """

    messages: list[TurnMessage] = Field(default_factory=list)
    submission_ref: str
    section: Optional[str] = None
    analysis_step: Optional[str] = None
    conversation_id: Optional[str] = None


class ChatTurnResult(BaseModel):
    """Output of a chat turn."""

    response: str
    conversation_id: str
    submission_id: str
    classification: Classification
    gate_state: GateState
    action_taken: bool = False
    needs_confirmation: bool = False
    persisted: bool = False


@dataclass
class TurnDependencies:
    """Collaborators of a turn. Built per request by the caller."""

    db: Session
    completer: Completer
    engine: WorkflowClient
    settings: AssistantSettings


def _conversation_history(
    request: ChatTurnRequest,
    store: ConversationStore,
    submission_id: str,
    conversation_id: str,
) -> list[dict[str, str]]:
    """Full conversation for checklist and answer generation.

    Clients that send the whole thread are taken at their word. A client
    that sends only the latest message gets the stored thread prepended.
    """
    sent = [m.model_dump() for m in request.messages]
    if len(sent) > 1:
        return sent
    try:
        stored = store.list_messages(submission_id, conversation_id)
    except SQLAlchemyError as e:
        logger.warning("Could not read stored conversation: %s", e)
        stored = []
    return [{"role": m.role, "content": m.content} for m in stored] + sent


def _pending_proposal(
    store: ConversationStore, submission_id: str, conversation_id: str
) -> PendingProposal | None:
    try:
        return store.pending_proposal(submission_id, conversation_id)
    except SQLAlchemyError as e:
        logger.warning("Could not read pending proposal: %s", e)
        return None


def _persist_turn(
    db: Session,
    submission_id: str,
    conversation_id: str,
    section: str | None,
    user_message: str,
    response: str,
    decision: GateDecision,
    classification: Classification,
    gathered: GatheredContext,
) -> bool:
    """Write both messages and reconcile step records. Never raises."""
    store = ConversationStore(db)
    steps = StepRecordService(db)
    persisted = True
    try:
        store.append(
            submission_id, conversation_id, MessageRole.user.value, user_message,
            section=section,
        )
        store.append(
            submission_id, conversation_id, MessageRole.assistant.value, response,
            section=section,
            classification=classification,
            action_taken=decision.action_taken,
            expects_confirmation=decision.expects_confirmation,
        )
    except (PersistenceError, SQLAlchemyError) as e:
        logger.warning("Failed to persist turn for %s: %s", submission_id, e)
        persisted = False

    try:
        if gathered.remote_statuses:
            steps.reconcile(submission_id, gathered.remote_statuses)
        if decision.action_taken:
            steps.mark_dispatched(submission_id, classification.step.value)
    except (PersistenceError, SQLAlchemyError, InvalidStepTransition, ValueError) as e:
        logger.warning("Failed to update step records for %s: %s", submission_id, e)
    return persisted


async def process_turn(
    request: ChatTurnRequest, deps: TurnDependencies
) -> ChatTurnResult:
    """Run one chat turn.

    Args:
        request: Client request.
        deps: Database session, completion service, engine client, settings.

    Returns:
        ChatTurnResult with the reply and turn metadata.

    Raises:
        AssistantError: E-2001 when there is no latest user message.
        IdentifierResolutionError: When the submission cannot be resolved.
    """
    started_at = time.perf_counter()
    if not request.messages or request.messages[-1].role != "user":
        raise AssistantError.from_code("E-2001")
    latest = request.messages[-1].content
    if not latest.strip():
        raise AssistantError.from_code("E-2001")

    gate_config = deps.settings.gate
    resolver = SubmissionResolver(deps.db)
    submission = resolver.resolve(request.submission_ref)
    submission_id = submission.id

    context = TurnContext(
        project_name=resolver.project_name(submission),
        section=request.section,
        current_step=request.analysis_step,
    )
    store = ConversationStore(deps.db)

    conversation_id, _ = await resolve_conversation_id(
        request.conversation_id,
        [m.model_dump() for m in request.messages],
        context,
        deps.completer,
        partial(store.latest_conversation_id, submission_id, request.section),
        threshold=gate_config.new_conversation_threshold,
    )

    pending = _pending_proposal(store, submission_id, conversation_id)
    reply = classify_reply(latest) if pending is not None else ConfirmationReply.none
    is_keyword_reply = pending is not None and reply != ConfirmationReply.none

    context_step = (
        pending.classification.step.value
        if is_keyword_reply
        else request.analysis_step
    )
    aggregator = ContextAggregator(StepRecordService(deps.db), deps.engine)
    gather_task = aggregator.gather(submission_id, context_step, request.section)

    if is_keyword_reply:
        gathered = await gather_task
        classification = pending.classification
    else:
        gathered, classification = await asyncio.gather(
            gather_task, classify(latest, context, deps.completer)
        )

    probe = partial(deps.engine.has_deployment_instructions, submission_id)
    dependency_note = None
    if not is_keyword_reply:
        classification, dependency_note = await apply_dependency_check(
            classification, probe, gate_config.dependency_check_threshold
        )

    gathered_step = resolve_step(context_step, request.section)
    section_preview = (
        gathered.section_text()
        if gathered_step is not None and gathered_step.value == classification.step.value
        else None
    )

    history = _conversation_history(request, store, submission_id, conversation_id)
    gate = ConfirmationGate(deps.completer, deps.engine.dispatch, gate_config)
    decision = await gate.evaluate(
        submission_id,
        classification,
        history,
        context,
        pending=pending,
        reply=reply,
        dependency_probe=probe,
        dependency_note=dependency_note,
        section_preview=section_preview,
    )

    answer = ""
    if decision.state != GateState.PENDING_CONFIRMATION:
        instruction = None
        if decision.state == GateState.REJECTED:
            instruction = REJECTION_INSTRUCTION
        elif decision.state == GateState.COMPLETED_WITH_ERROR:
            instruction = DISPATCH_FAILED_INSTRUCTION
        elif decision.action_taken:
            instruction = ACTION_STARTED_INSTRUCTION
        answer = await generate_answer(
            history, context, deps.completer,
            gathered=gathered,
            dependency_note=decision.dependency_note,
            instruction=instruction,
        )

    final_classification = decision.classification.model_copy(
        update={"context_summary": summarize_context(gathered)}
    )
    response = compose(decision, answer)

    persisted = _persist_turn(
        deps.db, submission_id, conversation_id, request.section, latest,
        response, decision, final_classification, gathered,
    )

    logger.info(
        "assistant_timing marker=turn_done submission_id=%s conversation_id=%s "
        "gate_state=%s action_taken=%s sources=%s elapsed=%.3f",
        submission_id,
        conversation_id,
        decision.state.value,
        decision.action_taken,
        ",".join(sorted(gathered.sources)) or "none",
        time.perf_counter() - started_at,
    )

    return ChatTurnResult(
        response=response,
        conversation_id=conversation_id,
        submission_id=submission_id,
        classification=final_classification,
        gate_state=decision.state,
        action_taken=decision.action_taken,
        needs_confirmation=decision.expects_confirmation,
        persisted=persisted,
    )


async def process_turn_bounded(
    request: ChatTurnRequest, deps: TurnDependencies
) -> ChatTurnResult:
    """``process_turn`` under the configured turn timeout.

    Raises:
        AssistantError: E-4003 when the turn does not finish in time.
    """
    timeout = deps.settings.server.turn_timeout_seconds
    try:
        return await asyncio.wait_for(process_turn(request, deps), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error("assistant_timing marker=turn_timeout timeout=%.1f", timeout)
        raise AssistantError.from_code("E-4003", seconds=timeout) from e
