"""Tests for open-ended answer generation."""

import pytest

from analysis_assistant.errors import GENERIC_APOLOGY
from analysis_assistant.orchestrator.answer import (
    MAX_HISTORY_MESSAGES,
    generate_answer,
    summarize_context,
    to_completion_messages,
)
from analysis_assistant.orchestrator.models import TurnContext
from analysis_assistant.services.context_aggregator import GatheredContext, LogEntry
from tests.helpers.fakes import FakeCompleter

CONTEXT = TurnContext(
    project_name="Token Vault", section="actor_summary", current_step="analyze_actors"
)


class TestToCompletionMessages:
    def test_merges_and_drops(self):
        shaped = to_completion_messages([
            {"role": "assistant", "content": "Welcome!"},
            {"role": "user", "content": "first"},
            {"role": "user", "content": "second"},
            {"role": "system", "content": "ignored"},
            {"role": "assistant", "content": "  "},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "third"},
        ])
        assert shaped == [
            {"role": "user", "content": "first\n\nsecond"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "third"},
        ]

    def test_keeps_recent_window(self):
        messages = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"}
            for i in range(MAX_HISTORY_MESSAGES + 10)
        ]
        shaped = to_completion_messages(messages)
        assert shaped[-1]["content"] == f"m{MAX_HISTORY_MESSAGES + 9}"
        assert len(shaped) <= MAX_HISTORY_MESSAGES


class TestSummarizeContext:
    def test_nothing_gathered(self):
        assert summarize_context(None) == "No analysis context was available."
        assert summarize_context(GatheredContext()) == "No analysis context was available."

    def test_sources_without_data(self):
        assert summarize_context(GatheredContext(sources={"bundle"})) == (
            "Context sources responded but returned no data."
        )

    def test_full(self):
        gathered = GatheredContext(
            section_data={"actors": ["Owner"]},
            logs=[
                LogEntry("history", "2024-01-01T00:00:00Z", "analyze_actors completed"),
                LogEntry("local", "", "started"),
            ],
            step_status="completed",
            sources={"dedicated", "history", "local"},
        )
        assert summarize_context(gathered) == (
            "Used section data; 2 log entries (history, local); step status completed."
        )


class TestGenerateAnswer:
    @pytest.mark.asyncio
    async def test_prompt_includes_context(self):
        completer = FakeCompleter(answer="The Owner can pause.")
        gathered = GatheredContext(
            section_data="Owner: can pause deposits",
            logs=[LogEntry("history", "2024-01-01T00:00:00Z", "analyze_actors completed")],
            step_status="completed",
            sources={"dedicated", "history"},
        )
        text = await generate_answer(
            [{"role": "user", "content": "what can the owner do?"}],
            CONTEXT,
            completer,
            gathered=gathered,
            dependency_note="Heads up.",
            instruction="Be brief.",
        )
        assert text == "The Owner can pause."
        system = completer.last("answer")["system"]
        assert "Owner: can pause deposits" in system
        assert "[2024-01-01T00:00:00Z] [history] analyze_actors completed" in system
        assert "Step status: completed" in system
        assert "Note for the user: Heads up." in system
        assert system.endswith("Be brief.")
        assert "actor analysis" in system

    @pytest.mark.asyncio
    async def test_failure_returns_apology(self):
        completer = FakeCompleter(answer=RuntimeError("overloaded"))
        text = await generate_answer(
            [{"role": "user", "content": "hi"}], CONTEXT, completer
        )
        assert text == GENERIC_APOLOGY

    @pytest.mark.asyncio
    async def test_no_user_message_returns_apology(self):
        completer = FakeCompleter()
        text = await generate_answer(
            [{"role": "assistant", "content": "hello"}], CONTEXT, completer
        )
        assert text == GENERIC_APOLOGY
        assert completer.calls == []
