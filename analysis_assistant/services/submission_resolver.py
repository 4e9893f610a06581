"""Resolve submission references and register new submissions.

A reference is either a submission UUID or an integer project id. A
project id resolves to that project's most recently created submission.
Resolution happens before any other call of a turn.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_assistant.db.models import Project, Submission
from analysis_assistant.errors import IdentifierResolutionError, PersistenceError
from analysis_assistant.services.step_records import StepRecordService

logger = logging.getLogger(__name__)


def _as_project_id(ref: str) -> int | None:
    text = ref.strip()
    if text.isdigit():
        return int(text)
    return None


def _as_uuid(ref: str) -> str | None:
    try:
        return str(UUID(ref.strip()))
    except (ValueError, AttributeError):
        return None


class SubmissionResolver:
    """Looks up submissions by UUID or project id.

    Args:
        db: SQLAlchemy session (sync).
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def resolve(self, ref: str | int) -> Submission:
        """Return the submission a reference points at.

        Args:
            ref: Submission UUID, or project id as int or digit string.

        Returns:
            The Submission row.

        Raises:
            IdentifierResolutionError: E-1002 for malformed references,
                E-1003 for a project without submissions, E-1001 when
                nothing matches.
        """
        text = str(ref)
        project_id = _as_project_id(text)
        if project_id is not None:
            submission = (
                self._db.query(Submission)
                .filter_by(project_id=project_id)
                .order_by(Submission.created_at.desc())
                .first()
            )
            if submission is None:
                code = (
                    "E-1003" if self._db.get(Project, project_id) is not None
                    else "E-1001"
                )
                raise IdentifierResolutionError(text, code)
            logger.debug("Project %d resolved to submission %s", project_id, submission.id)
            return submission

        submission_id = _as_uuid(text)
        if submission_id is None:
            raise IdentifierResolutionError(text, "E-1002")
        submission = self._db.get(Submission, submission_id)
        if submission is None:
            raise IdentifierResolutionError(text, "E-1001")
        return submission

    def project_exists(self, project_id: int) -> bool:
        return self._db.get(Project, project_id) is not None

    def project_name(self, submission: Submission) -> str:
        """Display name of the submission's project."""
        if submission.project_id is not None:
            project = self._db.get(Project, submission.project_id)
            if project is not None:
                return project.name
        return "Unknown"

    def register_submission(
        self,
        project_id: int | None,
        repository_url: str,
        submission_id: str | None = None,
    ) -> Submission:
        """Create a submission and its initial step records.

        Args:
            project_id: Owning project, or None for a standalone submission.
            repository_url: Repository under analysis.
            submission_id: UUID shared with the remote engine. Generated
                when omitted.

        Returns:
            The new Submission.

        Raises:
            IdentifierResolutionError: If project_id does not exist.
            PersistenceError: If the write fails.
        """
        if project_id is not None and self._db.get(Project, project_id) is None:
            raise IdentifierResolutionError(str(project_id), "E-1001")

        submission = Submission(project_id=project_id, repository_url=repository_url)
        if submission_id:
            submission.id = submission_id
        try:
            self._db.add(submission)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError("register_submission", type(e).__name__) from e

        StepRecordService(self._db).initialize_steps(submission.id)
        logger.info(
            "Registered submission %s for project %s", submission.id, project_id
        )
        return submission

    def create_project(
        self,
        name: str,
        repository_url: str | None = None,
        project_id: int | None = None,
    ) -> Project:
        """Create a local project row, with a fixed id when one is given."""
        project = Project(name=name, repository_url=repository_url)
        if project_id is not None:
            project.id = project_id
        try:
            self._db.add(project)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError("create_project", type(e).__name__) from e
        return project
