"""Tests for CLI commands, run in-process against an in-memory database."""

import json
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from analysis_assistant.cli.main import app
from analysis_assistant.config import AssistantSettings
from analysis_assistant.orchestrator.prompts import CHECKLIST_PREAMBLE
from analysis_assistant.services.conversation_store import ConversationStore
from analysis_assistant.services.step_records import StepRecordService
from tests.conftest import PROJECT_ID, SUBMISSION_ID
from tests.helpers.fakes import EngineStub, FakeCompleter, dispatch_ok

runner = CliRunner()


@pytest.fixture
def cli_db(db_session):
    """Point the CLI at the test session and skip table creation."""

    @contextmanager
    def _test_db_context():
        yield db_session

    with patch("analysis_assistant.cli.main.get_db_context", _test_db_context), \
            patch("analysis_assistant.cli.main.init_db"), \
            patch("analysis_assistant.cli.main.load_settings", return_value=AssistantSettings()):
        yield db_session


@pytest.fixture
def turn_services():
    """Replace the completion and engine clients used by ``ask``."""
    completer = FakeCompleter(
        classification={
            "step": "analyze_actors",
            "action": "refine",
            "confidence": 0.9,
            "is_actionable": True,
        },
        checklist=f"{CHECKLIST_PREAMBLE}\n\n- Add the Treasury actor",
        answer="The actor analysis is running again.",
    )
    stub = EngineStub({("POST", "/analyze"): dispatch_ok})
    with patch("analysis_assistant.cli.main.CompletionClient", return_value=completer), \
            patch(
                "analysis_assistant.cli.main.WorkflowClient",
                side_effect=lambda config: stub.client(),
            ):
        yield completer, stub


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("serve", "ask", "history", "register", "steps"):
        assert command in result.stdout


class TestRegister:
    def test_creates_project_and_submission(self, cli_db):
        result = runner.invoke(app, [
            "register", "12", "https://github.com/example/bridge",
            "--name", "Bridge", "--submission-id", SUBMISSION_ID,
        ])
        assert result.exit_code == 0, result.stdout
        assert "Created project" in result.stdout
        assert SUBMISSION_ID in result.stdout
        steps = StepRecordService(cli_db).list_steps(SUBMISSION_ID)
        assert [s.status for s in steps][:2] == ["in_progress", "pending"]

    def test_existing_project(self, cli_db, submission):
        result = runner.invoke(app, [
            "register", str(PROJECT_ID), "https://github.com/example/token-vault",
        ])
        assert result.exit_code == 0, result.stdout
        assert "Created project" not in result.stdout
        assert "Registered submission" in result.stdout


class TestSteps:
    def test_json(self, cli_db, submission):
        result = runner.invoke(app, ["steps", str(PROJECT_ID), "--json"])
        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert [s["step_id"] for s in data] == [
            "analyze_project",
            "analyze_actors",
            "analyze_deployment",
            "implement_deployment_script",
            "verify_deployment_script",
        ]

    def test_table(self, cli_db, submission):
        result = runner.invoke(app, ["steps", SUBMISSION_ID])
        assert result.exit_code == 0
        assert "Analysis Steps" in result.stdout

    def test_unknown_submission(self, cli_db):
        result = runner.invoke(app, ["steps", "999"])
        assert result.exit_code == 1
        assert "E-1001" in result.stdout


class TestHistory:
    def test_empty(self, cli_db, submission):
        result = runner.invoke(app, ["history", SUBMISSION_ID])
        assert result.exit_code == 0
        assert "No messages found." in result.stdout

    def test_json_by_conversation(self, cli_db, submission):
        store = ConversationStore(cli_db)
        store.append(SUBMISSION_ID, "c-1", "user", "who is the owner?")
        store.append(SUBMISSION_ID, "c-2", "user", "something else")

        result = runner.invoke(app, ["history", SUBMISSION_ID, "-c", "c-1", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [m["content"] for m in data] == ["who is the owner?"]

    def test_invalid_reference(self, cli_db):
        result = runner.invoke(app, ["history", "not-an-id"])
        assert result.exit_code == 1
        assert "E-1002" in result.stdout


class TestAsk:
    def test_proposal_then_confirmation(self, cli_db, submission, turn_services):
        completer, stub = turn_services
        first = runner.invoke(app, [
            "ask", SUBMISSION_ID, "add the Treasury as an actor",
            "--step", "analyze_actors", "--json",
        ])
        assert first.exit_code == 0, first.stdout
        proposal = json.loads(first.stdout)
        assert proposal["needs_confirmation"] is True
        assert proposal["gate_state"] == "pending_confirmation"

        second = runner.invoke(app, [
            "ask", SUBMISSION_ID, "yes",
            "--step", "analyze_actors", "-c", proposal["conversation_id"], "--json",
        ])
        assert second.exit_code == 0, second.stdout
        result = json.loads(second.stdout)
        assert result["action_taken"] is True
        assert len(stub.posts()) == 1

    def test_panel_output(self, cli_db, submission, turn_services):
        result = runner.invoke(app, ["ask", SUBMISSION_ID, "add the Treasury as an actor"])
        assert result.exit_code == 0, result.stdout
        assert "Assistant" in result.stdout
        assert "Reply 'yes'" in result.stdout

    def test_unknown_step(self, cli_db, submission, turn_services):
        result = runner.invoke(app, ["ask", SUBMISSION_ID, "hi", "--step", "deploy"])
        assert result.exit_code == 1
        assert "E-2002" in result.stdout

    def test_unknown_submission(self, cli_db, turn_services):
        result = runner.invoke(app, ["ask", "999", "hi"])
        assert result.exit_code == 1
        assert "E-1001" in result.stdout
