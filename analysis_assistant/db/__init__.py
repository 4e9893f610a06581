"""Database module for assistant state management and persistence."""

from analysis_assistant.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from analysis_assistant.db.models import (
    WORKFLOW_STEPS,
    AnalysisStep,
    ChatMessage,
    MessageRole,
    Project,
    StepId,
    StepStatus,
    Submission,
    SubmissionStatus,
)

__all__ = [
    # Models
    "Project",
    "Submission",
    "AnalysisStep",
    "ChatMessage",
    # Enums
    "StepId",
    "StepStatus",
    "SubmissionStatus",
    "MessageRole",
    "WORKFLOW_STEPS",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
