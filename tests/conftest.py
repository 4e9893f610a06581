"""Root-level pytest fixtures for all tests.

Provides an in-memory SQLite database shared across threads (the context
aggregator reads the local store from a worker thread), a seeded project
with one registered submission, and the engine stub.
"""

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from analysis_assistant.db.models import Base, Submission
from analysis_assistant.services.submission_resolver import SubmissionResolver
from tests.helpers.fakes import EngineStub

PROJECT_ID = 7
PROJECT_NAME = "Token Vault"
SUBMISSION_ID = "3f2b8c1e-5d4a-4e6b-9c7d-1a2b3c4d5e6f"


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """In-memory SQLite session, usable from worker threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def submission(db_session: Session) -> Submission:
    """Project 7 with one registered submission and its step records."""
    resolver = SubmissionResolver(db_session)
    resolver.create_project(
        PROJECT_NAME,
        repository_url="https://github.com/example/token-vault",
        project_id=PROJECT_ID,
    )
    return resolver.register_submission(
        PROJECT_ID,
        "https://github.com/example/token-vault",
        submission_id=SUBMISSION_ID,
    )


@pytest.fixture
def engine_stub() -> EngineStub:
    """Workflow engine stub with no routes; every GET is a 404."""
    return EngineStub()
