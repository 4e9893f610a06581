"""Tests for checklist synthesis."""

import pytest

from analysis_assistant.orchestrator import checklist
from analysis_assistant.orchestrator.models import TurnContext
from analysis_assistant.orchestrator.prompts import CHECKLIST_PREAMBLE, EMPTY_CHECKLIST
from tests.helpers.fakes import FakeCompleter

CONTEXT = TurnContext(project_name="Token Vault", section="actor_summary")

THREAD = [
    {"role": "user", "content": "Add the Treasury as an actor"},
    {"role": "assistant", "content": "Sure, anything else?"},
    {"role": "user", "content": "Also make the Owner role read-only"},
]


class TestValidateChecklist:
    def test_preamble_and_bullet(self):
        assert checklist.validate_checklist(f"{CHECKLIST_PREAMBLE}\n\n- Add Treasury")

    @pytest.mark.parametrize("text", [
        None,
        "",
        "- Add Treasury",
        f"{CHECKLIST_PREAMBLE}\n\nAdd Treasury",
        f"{CHECKLIST_PREAMBLE}\n\n- ",
        f"Sure! {CHECKLIST_PREAMBLE}\n- Add Treasury",
    ])
    def test_invalid(self, text):
        assert not checklist.validate_checklist(text)


class TestUserRequests:
    def test_skips_assistant_and_short_replies(self):
        messages = THREAD + [
            {"role": "assistant", "content": "Proceed?"},
            {"role": "user", "content": "yes"},
        ]
        assert checklist.user_requests(messages) == [
            "Add the Treasury as an actor",
            "Also make the Owner role read-only",
        ]


class TestNaiveChecklist:
    def test_last_three_requests(self):
        text = checklist.naive_checklist(["one", "two", "three", "four"])
        assert text == f"{CHECKLIST_PREAMBLE}\n\n- two\n- three\n- four"

    def test_long_request_is_truncated(self):
        text = checklist.naive_checklist(["x" * 500])
        bullet = text.splitlines()[-1]
        assert len(bullet) == 202
        assert bullet.endswith("...")

    def test_empty(self):
        assert checklist.naive_checklist([]) == EMPTY_CHECKLIST


class TestGenerate:
    @pytest.mark.asyncio
    async def test_model_checklist_is_cleaned(self):
        completer = FakeCompleter(
            checklist=(
                f"{CHECKLIST_PREAMBLE}\n\n- Add the Treasury actor\n"
                "- Make Owner read-only\n\nLet me know if that's right!"
            )
        )
        text = await checklist.generate(THREAD, CONTEXT, completer, step="analyze_actors")
        assert text == (
            f"{CHECKLIST_PREAMBLE}\n\n- Add the Treasury actor\n- Make Owner read-only"
        )
        sent = completer.last("checklist")["messages"][0]["content"]
        assert "1. Add the Treasury as an actor" in sent
        assert "2. Also make the Owner role read-only" in sent

    @pytest.mark.asyncio
    async def test_invalid_output_falls_back(self):
        completer = FakeCompleter(checklist="You want two changes.")
        text = await checklist.generate(THREAD, CONTEXT, completer, step="analyze_actors")
        assert text == (
            f"{CHECKLIST_PREAMBLE}\n\n- Add the Treasury as an actor\n"
            "- Also make the Owner role read-only"
        )

    @pytest.mark.asyncio
    async def test_service_failure_falls_back(self):
        completer = FakeCompleter(checklist=RuntimeError("down"))
        text = await checklist.generate(THREAD, CONTEXT, completer, step="analyze_actors")
        assert text.startswith(CHECKLIST_PREAMBLE)
        assert "- Add the Treasury as an actor" in text

    @pytest.mark.asyncio
    async def test_no_requests_is_fixed_text(self):
        completer = FakeCompleter(checklist=f"{CHECKLIST_PREAMBLE}\n\n- invented")
        text = await checklist.generate(
            [{"role": "user", "content": "yes"}], CONTEXT, completer, step="analyze_actors"
        )
        assert text == EMPTY_CHECKLIST
        assert completer.calls == []

    @pytest.mark.asyncio
    async def test_extras_are_appended(self):
        completer = FakeCompleter(checklist=f"{CHECKLIST_PREAMBLE}\n\n- Add Treasury")
        text = await checklist.generate(
            THREAD, CONTEXT, completer,
            step="analyze_actors",
            section_preview="Owner:   admin\nDepositor: user " + "z" * 300,
            dependency_note="Heads up.",
            preview_chars=40,
        )
        parts = text.split("\n\n")
        assert parts[-2] == "Note: Heads up."
        assert parts[-1].startswith("Current actor analysis: Owner: admin Depositor: user")
        assert parts[-1].endswith("...")

    @pytest.mark.asyncio
    async def test_preview_disabled(self):
        completer = FakeCompleter(checklist=f"{CHECKLIST_PREAMBLE}\n\n- Add Treasury")
        text = await checklist.generate(
            THREAD, CONTEXT, completer,
            step="analyze_actors", section_preview="Owner", preview_chars=0,
        )
        assert "Current" not in text
