"""FastAPI routes for the chat assistant.

Provides the chat turn endpoint, conversation id minting, and read access
to the persisted conversation log.
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from analysis_assistant.api.schemas import (
    ChatRequest,
    ChatResponse,
    ClassificationResponse,
    ConversationListResponse,
    ConversationSummary,
    HistoryMessage,
    HistoryResponse,
    SessionResponse,
)
from analysis_assistant.config import AssistantSettings, get_settings
from analysis_assistant.db.connection import get_db
from analysis_assistant.db.models import generate_uuid
from analysis_assistant.services.chat_turn import (
    ChatTurnRequest,
    TurnDependencies,
    TurnMessage,
    process_turn_bounded,
)
from analysis_assistant.services.conversation_store import (
    ConversationStore,
    serialize_message,
)
from analysis_assistant.services.llm_client import CompletionClient, Completer
from analysis_assistant.services.submission_resolver import SubmissionResolver
from analysis_assistant.services.workflow_client import WorkflowClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assistant"])

# Poll interval for client disconnect while a turn runs.
_DISCONNECT_POLL_SECONDS = 0.25

# Non-standard status used by proxies for "client closed request".
_CLIENT_CLOSED_REQUEST = 499


def get_completer(request: Request) -> Completer:
    """Dependency returning the shared completion client."""
    completer = getattr(request.app.state, "completer", None)
    if completer is None:
        completer = CompletionClient(get_settings().completion)
        request.app.state.completer = completer
    return completer


def get_workflow_client(request: Request) -> WorkflowClient:
    """Dependency returning the shared workflow engine client."""
    client = getattr(request.app.state, "workflow_client", None)
    if client is None:
        client = WorkflowClient(get_settings().workflow)
        request.app.state.workflow_client = client
    return client


def get_resolver(db: Session = Depends(get_db)) -> SubmissionResolver:
    """Dependency to get SubmissionResolver instance."""
    return SubmissionResolver(db)


def _history_message(data: dict[str, Any]) -> HistoryMessage:
    classification = data.get("classification")
    return HistoryMessage(
        **{
            **data,
            "classification": ClassificationResponse(**classification)
            if classification
            else None,
        }
    )


@router.post("/assistant/chat", response_model=ChatResponse)
async def submit_chat_turn(
    payload: ChatRequest,
    request: Request,
    db: Session = Depends(get_db),
    completer: Completer = Depends(get_completer),
    engine: WorkflowClient = Depends(get_workflow_client),
    settings: AssistantSettings = Depends(get_settings),
) -> ChatResponse | Response:
    """Run one chat turn.

    The turn runs as a task so a client disconnect can cancel it, along
    with every outstanding engine and completion call.

    Args:
        payload: Chat request body.
        request: Incoming request, polled for disconnect.
        db: Database session dependency.
        completer: Completion service dependency.
        engine: Workflow engine client dependency.
        settings: Assistant settings dependency.

    Returns:
        The assistant reply and turn metadata.
    """
    turn = ChatTurnRequest(
        messages=[TurnMessage(role=m.role, content=m.content) for m in payload.messages],
        submission_ref=str(payload.project_id),
        section=payload.section,
        analysis_step=payload.analysis_step,
        conversation_id=payload.conversation_id,
    )
    deps = TurnDependencies(db=db, completer=completer, engine=engine, settings=settings)

    task = asyncio.create_task(process_turn_bounded(turn, deps))
    while not task.done():
        if await request.is_disconnected():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info(
                "assistant_timing marker=turn_cancelled submission_ref=%s",
                turn.submission_ref,
            )
            return Response(status_code=_CLIENT_CLOSED_REQUEST)
        await asyncio.wait({task}, timeout=_DISCONNECT_POLL_SECONDS)

    result = task.result()
    return ChatResponse(
        response=result.response,
        conversation_id=result.conversation_id,
        submission_id=result.submission_id,
        classification=ClassificationResponse(
            **result.classification.model_dump(mode="json")
        ),
        needs_confirmation=result.needs_confirmation,
        action_taken=result.action_taken,
    )


@router.post(
    "/chat/session/{submission_ref}",
    response_model=SessionResponse,
    status_code=201,
)
def create_session(
    submission_ref: str,
    resolver: SubmissionResolver = Depends(get_resolver),
) -> SessionResponse:
    """Mint a conversation id for a submission.

    Nothing is stored until the first turn of the conversation.
    """
    submission = resolver.resolve(submission_ref)
    return SessionResponse(conversation_id=generate_uuid(), submission_id=submission.id)


@router.get("/chat/history/{submission_ref}", response_model=HistoryResponse)
def get_history(
    submission_ref: str,
    conversation_id: Optional[str] = Query(None, alias="conversationId"),
    section: Optional[str] = Query(None, description="Filter by UI section"),
    db: Session = Depends(get_db),
) -> HistoryResponse:
    """Persisted messages of a submission, oldest first.

    With ``conversationId`` the result is that thread in sequence order;
    otherwise all threads, optionally filtered by section.
    """
    submission = SubmissionResolver(db).resolve(submission_ref)
    store = ConversationStore(db)
    if conversation_id:
        messages = store.list_messages(submission.id, conversation_id)
    else:
        messages = store.list_section_messages(submission.id, section)
    return HistoryResponse(
        submission_id=submission.id,
        conversation_id=conversation_id,
        section=section,
        messages=[_history_message(serialize_message(m)) for m in messages],
    )


@router.get(
    "/chat/conversations/{submission_ref}",
    response_model=ConversationListResponse,
)
def list_conversations(
    submission_ref: str,
    db: Session = Depends(get_db),
) -> ConversationListResponse:
    """Conversation threads of a submission, most recent first."""
    submission = SubmissionResolver(db).resolve(submission_ref)
    rows = ConversationStore(db).list_conversations(submission.id)
    return ConversationListResponse(
        submission_id=submission.id,
        conversations=[ConversationSummary(**row) for row in rows],
    )
