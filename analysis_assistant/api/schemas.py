"""Pydantic schemas for the assistant API.

Wire names are camelCase to match the web client; Python attributes stay
snake_case. Requests accept either spelling.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessageIn(CamelModel):
    """A single message sent by the client."""

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(CamelModel):
    """Request body for ``POST /assistant/chat``.

    ``projectId`` carries either a submission UUID or an integer project
    id; both are resolved to a submission before anything else happens.
    """

    messages: list[ChatMessageIn] = Field(..., min_length=1)
    project_id: str | int
    section: Optional[str] = None
    analysis_step: Optional[str] = None
    conversation_id: Optional[str] = None


class ClassificationResponse(CamelModel):
    """Classification of the turn as returned to the client."""

    step: str
    action: str
    confidence: float
    explanation: str = ""
    is_actionable: bool = False
    needs_guidance: bool = False
    context_summary: Optional[str] = None


class ChatResponse(CamelModel):
    """Response for ``POST /assistant/chat``."""

    response: str
    conversation_id: str
    submission_id: str
    classification: ClassificationResponse
    needs_confirmation: bool = False
    action_taken: bool = False


class SessionResponse(CamelModel):
    """Response for minting a conversation id."""

    conversation_id: str
    submission_id: str


class HistoryMessage(CamelModel):
    """A persisted chat message with its classification metadata."""

    id: str
    conversation_id: str
    role: str
    content: str
    section: Optional[str] = None
    timestamp: str
    sequence: int
    classification: Optional[ClassificationResponse] = None
    action_taken: bool = False
    expects_confirmation: bool = False


class HistoryResponse(CamelModel):
    """Response for ``GET /chat/history/{submission_ref}``."""

    submission_id: str
    conversation_id: Optional[str] = None
    section: Optional[str] = None
    messages: list[HistoryMessage]


class ConversationSummary(CamelModel):
    """One conversation thread of a submission."""

    conversation_id: str
    section: Optional[str] = None
    last_activity: str
    message_count: int


class ConversationListResponse(CamelModel):
    """Response for ``GET /chat/conversations/{submission_ref}``."""

    submission_id: str
    conversations: list[ConversationSummary]
