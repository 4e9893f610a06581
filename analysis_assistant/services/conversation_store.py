"""Persistence service for chat messages.

Thin layer between the chat-turn handler and the ``chat_messages`` table.
The log is append-only; conversation state and pending proposals are
derived from it on read and never stored separately.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_assistant.db.models import (
    ChatMessage,
    MessageRole,
    generate_uuid,
    utc_now_iso,
)
from analysis_assistant.errors import PersistenceError
from analysis_assistant.orchestrator.models import Classification, PendingProposal

logger = logging.getLogger(__name__)


def _parse_ts(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def decode_classification(message: ChatMessage) -> Classification | None:
    """Decode a message's stored classification, tolerating corruption."""
    if not message.classification_json:
        return None
    try:
        return Classification.model_validate(json.loads(message.classification_json))
    except (json.JSONDecodeError, TypeError, PydanticValidationError):
        logger.warning("Corrupted classification_json for message %s", message.id)
        return None


class ConversationStore:
    """Append and query operations for the chat message log.

    Args:
        db: SQLAlchemy session (sync).
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def append(
        self,
        submission_id: str,
        conversation_id: str,
        role: str,
        content: str,
        section: str | None = None,
        classification: Classification | None = None,
        action_taken: bool = False,
        expects_confirmation: bool = False,
        timestamp: str | None = None,
    ) -> ChatMessage:
        """Append a message with the next sequence number.

        The timestamp is clamped up to the latest one already stored for
        the conversation so timestamps never decrease.

        Args:
            submission_id: Submission UUID.
            conversation_id: Conversation identifier.
            role: 'user' or 'assistant'.
            content: Message text.
            section: UI section the turn came from.
            classification: Classification to store with the message.
            action_taken: Whether this turn dispatched to the engine.
            expects_confirmation: Whether this message proposes an action.
            timestamp: ISO8601 timestamp, defaults to now.

        Returns:
            The created ChatMessage.

        Raises:
            PersistenceError: If the write fails. The session is rolled back.
        """
        try:
            # Single-writer SQLite makes SELECT max + INSERT safe in one
            # transaction. The unique constraint catches any race elsewhere.
            last = (
                self._db.query(ChatMessage.sequence, ChatMessage.timestamp)
                .filter_by(submission_id=submission_id, conversation_id=conversation_id)
                .order_by(ChatMessage.sequence.desc())
                .first()
            )
            next_seq = (last[0] + 1) if last else 1

            stamp = timestamp or utc_now_iso()
            if last is not None:
                previous, current = _parse_ts(last[1]), _parse_ts(stamp)
                if previous and current and current < previous:
                    stamp = last[1]

            msg = ChatMessage(
                id=generate_uuid(),
                submission_id=submission_id,
                conversation_id=conversation_id,
                role=role,
                content=content,
                section=section,
                timestamp=stamp,
                sequence=next_seq,
                classification_json=(
                    classification.model_dump_json() if classification else None
                ),
                action_taken=action_taken,
                expects_confirmation=expects_confirmation,
            )
            self._db.add(msg)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError("append", type(e).__name__) from e
        return msg

    def list_messages(
        self,
        submission_id: str,
        conversation_id: str,
        limit: int | None = None,
    ) -> list[ChatMessage]:
        """Messages of one conversation in sequence order."""
        query = (
            self._db.query(ChatMessage)
            .filter_by(submission_id=submission_id, conversation_id=conversation_id)
            .order_by(ChatMessage.sequence)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def list_section_messages(
        self, submission_id: str, section: str | None = None
    ) -> list[ChatMessage]:
        """All messages for a submission, optionally limited to a section.

        Ordered by timestamp, then sequence.
        """
        query = self._db.query(ChatMessage).filter_by(submission_id=submission_id)
        if section is not None:
            query = query.filter_by(section=section)
        return query.order_by(ChatMessage.timestamp, ChatMessage.sequence).all()

    def latest_assistant_message(
        self, submission_id: str, conversation_id: str
    ) -> Optional[ChatMessage]:
        return (
            self._db.query(ChatMessage)
            .filter_by(
                submission_id=submission_id,
                conversation_id=conversation_id,
                role=MessageRole.assistant.value,
            )
            .order_by(ChatMessage.sequence.desc())
            .first()
        )

    def pending_proposal(
        self, submission_id: str, conversation_id: str
    ) -> PendingProposal | None:
        """The open proposal of a conversation, if its last assistant
        message asked for confirmation and stored a usable classification.
        """
        latest = self.latest_assistant_message(submission_id, conversation_id)
        if latest is None or not latest.expects_confirmation:
            return None
        classification = decode_classification(latest)
        if classification is None:
            return None
        return PendingProposal(
            message_id=latest.id,
            classification=classification,
            checklist=latest.content,
        )

    def latest_conversation_id(
        self, submission_id: str, section: str | None = None
    ) -> str | None:
        """Most recently active conversation for (submission, section)."""
        query = self._db.query(ChatMessage.conversation_id).filter_by(
            submission_id=submission_id
        )
        if section is not None:
            query = query.filter_by(section=section)
        row = query.order_by(
            ChatMessage.timestamp.desc(), ChatMessage.sequence.desc()
        ).first()
        return row[0] if row else None

    def conversation_state(
        self, submission_id: str, conversation_id: str
    ) -> dict[str, Any] | None:
        """Derive ``{conversation_id, submission_id, section, last_activity}``.

        Returns:
            The state dict, or None when the conversation has no messages.
        """
        last = (
            self._db.query(ChatMessage)
            .filter_by(submission_id=submission_id, conversation_id=conversation_id)
            .order_by(ChatMessage.sequence.desc())
            .first()
        )
        if last is None:
            return None
        return {
            "conversation_id": conversation_id,
            "submission_id": submission_id,
            "section": last.section,
            "last_activity": last.timestamp,
        }

    def list_conversations(self, submission_id: str) -> list[dict[str, Any]]:
        """Conversations of a submission, most recent first, with counts."""
        rows = (
            self._db.query(
                ChatMessage.conversation_id,
                func.max(ChatMessage.timestamp),
                func.count(ChatMessage.id),
            )
            .filter_by(submission_id=submission_id)
            .group_by(ChatMessage.conversation_id)
            .order_by(func.max(ChatMessage.timestamp).desc())
            .all()
        )
        results = []
        for conversation_id, last_activity, count in rows:
            state = self.conversation_state(submission_id, conversation_id) or {}
            results.append({
                "conversation_id": conversation_id,
                "section": state.get("section"),
                "last_activity": last_activity,
                "message_count": count,
            })
        return results


def serialize_message(message: ChatMessage) -> dict[str, Any]:
    """Render a stored message for API and CLI output."""
    classification = decode_classification(message)
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "role": message.role,
        "content": message.content,
        "section": message.section,
        "timestamp": message.timestamp,
        "sequence": message.sequence,
        "classification": classification.model_dump(mode="json") if classification else None,
        "action_taken": message.action_taken,
        "expects_confirmation": message.expects_confirmation,
    }
