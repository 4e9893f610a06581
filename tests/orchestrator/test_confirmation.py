"""Tests for the propose, confirm, execute gate."""

from unittest.mock import AsyncMock

import pytest

from analysis_assistant.config import GateConfig
from analysis_assistant.errors import DispatchError
from analysis_assistant.orchestrator.confirmation import (
    ConfirmationGate,
    confirmed_checklist,
    qualifies_for_proposal,
    rejected,
)
from analysis_assistant.orchestrator.models import (
    Classification,
    ConfirmationReply,
    GateState,
    PendingProposal,
    RequestAction,
    TargetStep,
    TurnContext,
)
from analysis_assistant.orchestrator.prompts import (
    CHECKLIST_PREAMBLE,
    CONFIRMATION_QUESTION,
    DEPENDENCY_NOTE,
)
from tests.helpers.fakes import FakeCompleter

SUBMISSION = "sub-1"
CONTEXT = TurnContext(project_name="Token Vault", section="actor_summary")
CHECKLIST = f"{CHECKLIST_PREAMBLE}\n\n- Add the Treasury actor"
MESSAGES = [{"role": "user", "content": "Add the Treasury as an actor"}]


def _classification(**overrides) -> Classification:
    values = dict(
        step=TargetStep.analyze_actors,
        action=RequestAction.refine,
        confidence=0.9,
        is_actionable=True,
    )
    values.update(overrides)
    return Classification(**values)


def _pending(**overrides) -> PendingProposal:
    return PendingProposal(message_id="m-1", classification=_classification(**overrides))


@pytest.fixture
def dispatcher() -> AsyncMock:
    return AsyncMock(return_value={"status": "accepted"})


@pytest.fixture
def gate(dispatcher) -> ConfirmationGate:
    return ConfirmationGate(FakeCompleter(checklist=CHECKLIST), dispatcher, GateConfig())


class TestQualifies:
    def test_confident_actionable_mutation(self):
        assert qualifies_for_proposal(_classification(), 0.7)

    def test_threshold_is_inclusive(self):
        assert qualifies_for_proposal(_classification(confidence=0.7), 0.7)
        assert not qualifies_for_proposal(_classification(confidence=0.69), 0.7)

    @pytest.mark.parametrize("overrides", [
        {"is_actionable": False},
        {"action": RequestAction.clarify},
        {"step": TargetStep.unknown},
        {"needs_guidance": True},
    ])
    def test_disqualified(self, overrides):
        assert not qualifies_for_proposal(_classification(**overrides), 0.7)

    def test_rejected_cannot_qualify(self):
        r = rejected(_classification())
        assert r.confidence == 0.0
        assert r.is_actionable is False
        assert not qualifies_for_proposal(r, 0.0)


class TestPropose:
    @pytest.mark.asyncio
    async def test_actionable_request_is_proposed(self, gate, dispatcher):
        decision = await gate.evaluate(SUBMISSION, _classification(), MESSAGES, CONTEXT)
        assert decision.state == GateState.PENDING_CONFIRMATION
        assert decision.checklist == CHECKLIST
        assert decision.expects_confirmation is True
        assert decision.action_taken is False
        dispatcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_low_confidence_is_not_proposed(self, gate, dispatcher):
        decision = await gate.evaluate(
            SUBMISSION, _classification(confidence=0.5), MESSAGES, CONTEXT
        )
        assert decision.state == GateState.AWAITING_REQUEST
        assert decision.checklist is None
        dispatcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dependency_note_reaches_checklist(self, gate):
        decision = await gate.evaluate(
            SUBMISSION,
            _classification(step=TargetStep.analyze_deployment),
            MESSAGES,
            CONTEXT,
            dependency_note=DEPENDENCY_NOTE,
        )
        assert f"Note: {DEPENDENCY_NOTE}" in decision.checklist
        assert decision.dependency_note == DEPENDENCY_NOTE

    @pytest.mark.asyncio
    async def test_custom_threshold(self, dispatcher):
        gate = ConfirmationGate(
            FakeCompleter(checklist=CHECKLIST),
            dispatcher,
            GateConfig(dispatch_confidence_threshold=0.95),
        )
        decision = await gate.evaluate(SUBMISSION, _classification(), MESSAGES, CONTEXT)
        assert decision.state == GateState.AWAITING_REQUEST


class TestConfirm:
    @pytest.mark.asyncio
    async def test_positive_reply_dispatches_once(self, gate, dispatcher):
        decision = await gate.evaluate(
            SUBMISSION,
            Classification.unknown(),
            MESSAGES + [{"role": "user", "content": "yes"}],
            CONTEXT,
            pending=_pending(),
            reply=ConfirmationReply.positive,
        )
        assert decision.state == GateState.COMPLETED
        assert decision.action_taken is True
        assert decision.classification.step == TargetStep.analyze_actors
        dispatcher.assert_awaited_once_with(SUBMISSION, "analyze_actors", CHECKLIST)

    @pytest.mark.asyncio
    async def test_negative_reply_rejects(self, gate, dispatcher):
        decision = await gate.evaluate(
            SUBMISSION,
            _classification(),
            MESSAGES,
            CONTEXT,
            pending=_pending(),
            reply=ConfirmationReply.negative,
        )
        assert decision.state == GateState.REJECTED
        assert decision.classification.confidence == 0.0
        assert decision.classification.is_actionable is False
        assert decision.action_taken is False
        dispatcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_reply_is_a_fresh_request(self, gate, dispatcher):
        decision = await gate.evaluate(
            SUBMISSION,
            _classification(step=TargetStep.analyze_project),
            MESSAGES,
            CONTEXT,
            pending=_pending(),
            reply=ConfirmationReply.none,
        )
        assert decision.state == GateState.PENDING_CONFIRMATION
        assert decision.classification.step == TargetStep.analyze_project
        dispatcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_positive_without_pending_does_not_dispatch(self, gate, dispatcher):
        decision = await gate.evaluate(
            SUBMISSION,
            Classification.unknown(),
            MESSAGES,
            CONTEXT,
            reply=ConfirmationReply.positive,
        )
        assert decision.state == GateState.AWAITING_REQUEST
        dispatcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_low_confidence_proposal_is_not_executed(self, gate, dispatcher):
        decision = await gate.evaluate(
            SUBMISSION,
            Classification.unknown(),
            MESSAGES,
            CONTEXT,
            pending=_pending(confidence=0.4),
            reply=ConfirmationReply.positive,
        )
        assert decision.state == GateState.AWAITING_REQUEST
        dispatcher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dependency_rechecked_before_execute(self, gate, dispatcher):
        probe = AsyncMock(return_value=False)
        decision = await gate.evaluate(
            SUBMISSION,
            Classification.unknown(),
            MESSAGES,
            CONTEXT,
            pending=_pending(step=TargetStep.implement_deployment_script),
            reply=ConfirmationReply.positive,
            dependency_probe=probe,
        )
        assert decision.classification.step == TargetStep.analyze_deployment
        assert decision.dependency_note == DEPENDENCY_NOTE
        assert dispatcher.await_args.args[1] == "analyze_deployment"

    @pytest.mark.asyncio
    async def test_confirmed_checklist_is_dispatched_verbatim(self, dispatcher):
        shown = f"{CHECKLIST_PREAMBLE}\n\n- Add the Treasury actor\n- Drop the Guest role"
        completer = FakeCompleter(checklist="- something else entirely")
        gate = ConfirmationGate(completer, dispatcher)
        pending = _pending().model_copy(
            update={"checklist": f"{shown}\n\n{CONFIRMATION_QUESTION}"}
        )

        decision = await gate.evaluate(
            SUBMISSION, Classification.unknown(), MESSAGES, CONTEXT,
            pending=pending, reply=ConfirmationReply.positive,
        )

        dispatcher.assert_awaited_once_with(SUBMISSION, "analyze_actors", shown)
        assert decision.checklist == shown
        assert completer.count("checklist") == 0

    @pytest.mark.asyncio
    async def test_confirmed_dependency_note_reaches_payload(self, dispatcher):
        shown = f"{CHECKLIST_PREAMBLE}\n\n- Use CREATE2\n\nNote: {DEPENDENCY_NOTE}"
        pending = _pending(step=TargetStep.analyze_deployment).model_copy(
            update={"checklist": f"{shown}\n\n{CONFIRMATION_QUESTION}"}
        )
        gate = ConfirmationGate(FakeCompleter(checklist=CHECKLIST), dispatcher)

        await gate.evaluate(
            SUBMISSION, Classification.unknown(), MESSAGES, CONTEXT,
            pending=pending, reply=ConfirmationReply.positive,
            dependency_probe=AsyncMock(return_value=False),
        )

        sent = dispatcher.await_args.args[2]
        assert sent == shown
        assert DEPENDENCY_NOTE in sent

    @pytest.mark.asyncio
    async def test_step_change_at_execute_regenerates_checklist(self, dispatcher):
        pending = _pending(step=TargetStep.implement_deployment_script).model_copy(
            update={"checklist": f"- Write the script\n\n{CONFIRMATION_QUESTION}"}
        )
        gate = ConfirmationGate(FakeCompleter(checklist=CHECKLIST), dispatcher)

        await gate.evaluate(
            SUBMISSION, Classification.unknown(), MESSAGES, CONTEXT,
            pending=pending, reply=ConfirmationReply.positive,
            dependency_probe=AsyncMock(return_value=False),
        )

        sent = dispatcher.await_args.args[2]
        assert dispatcher.await_args.args[1] == "analyze_deployment"
        assert "Write the script" not in sent
        assert DEPENDENCY_NOTE in sent


class TestDispatchFailure:
    @pytest.mark.asyncio
    async def test_failure_is_reported_not_retried(self, dispatcher):
        dispatcher.side_effect = DispatchError("analyze_actors", "HTTP 503: busy")
        gate = ConfirmationGate(FakeCompleter(checklist=CHECKLIST), dispatcher)
        decision = await gate.evaluate(
            SUBMISSION,
            Classification.unknown(),
            MESSAGES,
            CONTEXT,
            pending=_pending(),
            reply=ConfirmationReply.positive,
        )
        assert decision.state == GateState.COMPLETED_WITH_ERROR
        assert decision.action_taken is False
        assert decision.outcome.attempted is True
        assert "503" in decision.outcome.error
        assert dispatcher.await_count == 1


class TestConfirmedChecklist:
    def test_strips_confirmation_question(self):
        assert confirmed_checklist(f"{CHECKLIST}\n\n{CONFIRMATION_QUESTION}") == CHECKLIST

    def test_text_without_question_is_kept(self):
        assert confirmed_checklist(CHECKLIST) == CHECKLIST

    @pytest.mark.parametrize("text", [None, "", CONFIRMATION_QUESTION])
    def test_empty(self, text):
        assert confirmed_checklist(text) is None
