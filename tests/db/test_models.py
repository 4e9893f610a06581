"""Tests for database models and table constraints."""

import pytest
from sqlalchemy.exc import IntegrityError

from analysis_assistant.db.models import (
    WORKFLOW_STEPS,
    AnalysisStep,
    ChatMessage,
    StepId,
    StepStatus,
    generate_uuid,
    utc_now_iso,
)
from tests.conftest import SUBMISSION_ID


def test_workflow_steps_cover_every_step_id():
    assert WORKFLOW_STEPS == tuple(StepId)
    assert WORKFLOW_STEPS[0] == StepId("analyze_project")


def test_generate_uuid_is_unique():
    assert generate_uuid() != generate_uuid()
    assert len(generate_uuid()) == 36


def test_utc_now_iso_has_timezone():
    assert utc_now_iso().endswith("+00:00")


def test_registered_submission_has_pending_step_records(db_session, submission):
    steps = db_session.query(AnalysisStep).filter_by(submission_id=SUBMISSION_ID).all()
    assert len(steps) == len(WORKFLOW_STEPS)
    assert {s.status for s in steps} == {StepStatus.pending.value}


def test_duplicate_step_record_rejected(db_session, submission):
    db_session.add(AnalysisStep(submission_id=SUBMISSION_ID, step_id="analyze_project"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_duplicate_message_sequence_rejected(db_session, submission):
    for _ in range(2):
        db_session.add(ChatMessage(
            submission_id=SUBMISSION_ID,
            conversation_id="c1",
            role="user",
            content="hello",
            sequence=1,
        ))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_message_defaults(db_session, submission):
    msg = ChatMessage(
        submission_id=SUBMISSION_ID,
        conversation_id="c1",
        role="assistant",
        content="Hi",
        sequence=1,
    )
    db_session.add(msg)
    db_session.commit()
    assert msg.id
    assert msg.action_taken is False
    assert msg.expects_confirmation is False
    assert msg.timestamp
