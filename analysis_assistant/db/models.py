"""SQLAlchemy ORM models for the analysis assistant state database.

This module defines the local mirror of projects and submissions, the
cached analysis step records, and the append-only chat message log.
Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the database schema constraints


class StepId(str, Enum):
    """Phases of the externally executed analysis workflow, in run order."""

    analyze_project = "analyze_project"
    analyze_actors = "analyze_actors"
    analyze_deployment = "analyze_deployment"
    implement_deployment_script = "implement_deployment_script"
    verify_deployment_script = "verify_deployment_script"


WORKFLOW_STEPS: tuple[StepId, ...] = tuple(StepId)


class StepStatus(str, Enum):
    """Status values for a cached analysis step.

    Lifecycle: pending -> in_progress -> completed/failed
               completed -> in_progress (re-analysis requested)
    """

    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class SubmissionStatus(str, Enum):
    """Status values for a submission as a whole."""

    pending = "pending"
    testing = "testing"
    completed = "completed"
    failed = "failed"


class MessageRole(str, Enum):
    """Author of a chat message."""

    user = "user"
    assistant = "assistant"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Project(Base):
    """Project owning one or more submissions.

    Projects are managed elsewhere; this table is read to resolve integer
    project ids and to name the project in prompts.
    """

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    repository_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    submissions: Mapped[list["Submission"]] = relationship(
        "Submission", back_populates="project"
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id!r}, name={self.name!r})>"


class Submission(Base):
    """One analysis request for a repository.

    Attributes:
        id: UUID primary key, shared with the remote workflow engine.
        project_id: Owning project, if any.
        repository_url: Repository under analysis.
        status: Aggregate status of the submission.
        created_at: ISO8601 creation timestamp (newest wins on project lookup).
    """

    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_project_created", "project_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    project_id: Mapped[int | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    repository_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubmissionStatus.pending.value
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    project: Mapped["Project | None"] = relationship(
        "Project", back_populates="submissions"
    )
    steps: Mapped[list["AnalysisStep"]] = relationship(
        "AnalysisStep",
        back_populates="submission",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Submission(id={self.id!r}, project_id={self.project_id!r})>"


class AnalysisStep(Base):
    """Locally cached status and result of one workflow step.

    Created for every step when a submission is registered, then updated
    by reconciliation against the remote engine. Never deleted.

    Attributes:
        submission_id: FK to Submission.
        step_id: StepId value.
        status: StepStatus value.
        details: Human-readable progress text or log excerpt.
        json_data: JSON-encoded step result, if cached.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp.
    """

    __tablename__ = "analysis_steps"
    __table_args__ = (
        UniqueConstraint("submission_id", "step_id", name="uq_analysis_step"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_id: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StepStatus.pending.value
    )
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    json_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    submission: Mapped["Submission"] = relationship(
        "Submission", back_populates="steps"
    )

    def __repr__(self) -> str:
        return (
            f"<AnalysisStep(submission_id={self.submission_id!r}, "
            f"step_id={self.step_id!r}, status={self.status!r})>"
        )


class ChatMessage(Base):
    """Persisted chat turn message.

    Append-only. Assistant messages carry the classification that drove
    them, whether an action was dispatched, and whether they asked the
    user to confirm a proposed action.

    Attributes:
        id: UUID primary key.
        submission_id: Submission the conversation is about.
        conversation_id: Conversation thread identifier.
        role: 'user' or 'assistant'.
        content: Message text.
        section: UI section the message was sent from.
        timestamp: ISO8601, non-decreasing within a conversation.
        sequence: Ordering within a conversation (monotonically increasing).
        classification_json: JSON-encoded Classification, if any.
        action_taken: True when this turn dispatched to the workflow engine.
        expects_confirmation: True when this message proposed an action.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        UniqueConstraint(
            "submission_id", "conversation_id", "sequence",
            name="uq_chatmsg_conversation_seq",
        ),
        Index("ix_chatmsg_conversation_seq", "submission_id", "conversation_id", "sequence"),
        Index("ix_chatmsg_section_time", "submission_id", "section", "timestamp"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    submission_id: Mapped[str] = mapped_column(String(36), nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(36), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    section: Mapped[str | None] = mapped_column(String(60), nullable=True)
    timestamp: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    classification_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_taken: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    expects_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id!r}, role={self.role!r}, "
            f"seq={self.sequence})>"
        )
