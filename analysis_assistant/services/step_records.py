"""Local analysis step records with lifecycle validation.

One ``AnalysisStep`` row exists per (submission, step). Rows are created
when a submission is registered and afterwards only updated, either by
reconciliation against the remote engine or when the assistant
dispatches a rerun. Rows are never deleted.
"""

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_assistant.db.models import (
    WORKFLOW_STEPS,
    AnalysisStep,
    StepId,
    StepStatus,
    utc_now_iso,
)
from analysis_assistant.errors import PersistenceError
from analysis_assistant.utils.redaction import sanitize_text

logger = logging.getLogger(__name__)


class InvalidStepTransition(Exception):
    """Raised when a step status change is not allowed.

    Attributes:
        step_id: Step being updated.
        current_state: Stored status.
        attempted_state: Requested status.
    """

    def __init__(
        self, step_id: str, current_state: StepStatus, attempted_state: StepStatus
    ) -> None:
        self.step_id = step_id
        self.current_state = current_state
        self.attempted_state = attempted_state
        allowed = ", ".join(s.value for s in VALID_TRANSITIONS[current_state])
        super().__init__(
            f"Step '{step_id}' cannot move from '{current_state.value}' to "
            f"'{attempted_state.value}'. Allowed transitions: {allowed}"
        )


# completed -> in_progress is a requested re-analysis, not a regression.
VALID_TRANSITIONS: dict[StepStatus, list[StepStatus]] = {
    StepStatus.pending: [StepStatus.in_progress, StepStatus.completed, StepStatus.failed],
    StepStatus.in_progress: [StepStatus.completed, StepStatus.failed],
    StepStatus.completed: [StepStatus.in_progress],
    StepStatus.failed: [StepStatus.in_progress, StepStatus.pending],
}

# Status spellings used by the remote engine
_REMOTE_STATUS_ALIASES: dict[str, StepStatus] = {
    "pending": StepStatus.pending,
    "queued": StepStatus.pending,
    "in_progress": StepStatus.in_progress,
    "running": StepStatus.in_progress,
    "processing": StepStatus.in_progress,
    "completed": StepStatus.completed,
    "complete": StepStatus.completed,
    "success": StepStatus.completed,
    "done": StepStatus.completed,
    "failed": StepStatus.failed,
    "error": StepStatus.failed,
}


def normalize_status(value: Any) -> StepStatus | None:
    """Map a remote status string to StepStatus, or None if unrecognized."""
    if not isinstance(value, str):
        return None
    return _REMOTE_STATUS_ALIASES.get(value.strip().lower())


class StepRecordService:
    """CRUD and reconciliation for ``AnalysisStep`` rows.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def initialize_steps(self, submission_id: str) -> list[AnalysisStep]:
        """Create the step rows for a new submission.

        The first step starts ``in_progress``, the rest ``pending``.
        Existing rows are left untouched, so calling twice is harmless.

        Args:
            submission_id: Submission UUID.

        Returns:
            All step rows for the submission in workflow order.
        """
        existing = {s.step_id for s in self.list_steps(submission_id)}
        now = utc_now_iso()
        try:
            for index, step in enumerate(WORKFLOW_STEPS):
                if step.value in existing:
                    continue
                self.db.add(AnalysisStep(
                    submission_id=submission_id,
                    step_id=step.value,
                    status=(
                        StepStatus.in_progress.value if index == 0
                        else StepStatus.pending.value
                    ),
                    created_at=now,
                    updated_at=now,
                ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("initialize_steps", type(e).__name__) from e
        return self.list_steps(submission_id)

    def get_step(self, submission_id: str, step_id: str) -> AnalysisStep | None:
        return (
            self.db.query(AnalysisStep)
            .filter_by(submission_id=submission_id, step_id=step_id)
            .first()
        )

    def list_steps(self, submission_id: str) -> list[AnalysisStep]:
        """Step rows for a submission in workflow order."""
        order = {step.value: i for i, step in enumerate(WORKFLOW_STEPS)}
        rows = self.db.query(AnalysisStep).filter_by(submission_id=submission_id).all()
        return sorted(rows, key=lambda s: order.get(s.step_id, len(order)))

    def get_json_data(self, submission_id: str, step_id: str) -> Any:
        """Decoded ``json_data`` of a step, or None if absent or corrupt."""
        step = self.get_step(submission_id, step_id)
        if step is None or not step.json_data:
            return None
        try:
            return json.loads(step.json_data)
        except (json.JSONDecodeError, TypeError):
            logger.warning(
                "Corrupted json_data for step %s of submission %s",
                step_id, submission_id,
            )
            return None

    def upsert_step(
        self,
        submission_id: str,
        step_id: str,
        status: StepStatus | None = None,
        details: str | None = None,
        json_data: Any = None,
    ) -> AnalysisStep:
        """Create or update a step row, validating the status change.

        Args:
            submission_id: Submission UUID.
            step_id: StepId value.
            status: New status. None keeps the stored one.
            details: Progress text. Secrets are redacted before storing.
            json_data: JSON-serializable step result.

        Returns:
            The stored row.

        Raises:
            ValueError: If step_id is not a workflow step.
            InvalidStepTransition: If the status change is not allowed.
            PersistenceError: If the write fails.
        """
        StepId(step_id)
        step = self.get_step(submission_id, step_id)
        if step is None:
            step = AnalysisStep(
                submission_id=submission_id,
                step_id=step_id,
                status=(status or StepStatus.pending).value,
            )
            self.db.add(step)
        elif status is not None and status.value != step.status:
            current = StepStatus(step.status)
            if status not in VALID_TRANSITIONS[current]:
                raise InvalidStepTransition(step_id, current, status)
            if current == StepStatus.completed and status == StepStatus.in_progress:
                logger.info(
                    "Re-running completed step %s for submission %s",
                    step_id, submission_id,
                )
            step.status = status.value

        if details is not None:
            step.details = sanitize_text(details)
        if json_data is not None:
            step.json_data = json.dumps(json_data)
        step.updated_at = utc_now_iso()

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("upsert_step", type(e).__name__) from e
        return step

    def mark_dispatched(self, submission_id: str, step_id: str) -> AnalysisStep:
        """Move a step to ``in_progress`` after a successful dispatch.

        A step that is already running stays as it is.
        """
        step = self.get_step(submission_id, step_id)
        if step is not None and step.status == StepStatus.in_progress.value:
            return step
        return self.upsert_step(
            submission_id, step_id, status=StepStatus.in_progress,
            details="Re-analysis requested from the assistant",
        )

    def reconcile(
        self, submission_id: str, remote_statuses: dict[str, Any]
    ) -> list[str]:
        """Bring local step statuses in line with the remote engine.

        Unknown steps and unrecognized statuses are ignored. Transitions
        the lifecycle does not allow are logged and skipped.

        Args:
            submission_id: Submission UUID.
            remote_statuses: Mapping of step id to remote status string.

        Returns:
            Step ids whose status changed.
        """
        changed = []
        known = {step.value for step in WORKFLOW_STEPS}
        for step_id, raw_status in remote_statuses.items():
            status = normalize_status(raw_status)
            if step_id not in known or status is None:
                continue
            step = self.get_step(submission_id, step_id)
            if step is not None and step.status == status.value:
                continue
            try:
                self.upsert_step(submission_id, step_id, status=status)
            except InvalidStepTransition as e:
                logger.warning("Skipping reconciliation: %s", e)
                continue
            changed.append(step_id)
        if changed:
            logger.info(
                "Reconciled steps for submission %s: %s",
                submission_id, ", ".join(changed),
            )
        return changed
