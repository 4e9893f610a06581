"""Final response text for a turn."""

from analysis_assistant.orchestrator.models import GateDecision, GateState
from analysis_assistant.orchestrator.prompts import (
    CONFIRMATION_QUESTION,
    EMPTY_CHECKLIST,
    acknowledgement,
)


def compose(decision: GateDecision, qa_answer: str) -> str:
    """Combine the gate outcome and the Q&A answer into the reply.

    - PENDING_CONFIRMATION: checklist, blank line, confirmation question.
    - Action executed this turn: acknowledgement, blank line, answer.
    - Anything else, failed dispatches included: the answer alone.
    """
    if decision.state == GateState.PENDING_CONFIRMATION:
        checklist = decision.checklist or EMPTY_CHECKLIST
        return f"{checklist}\n\n{CONFIRMATION_QUESTION}"

    if decision.action_taken:
        ack = acknowledgement(
            decision.classification.step.value,
            decision.classification.action.value,
        )
        return f"{ack}\n\n{qa_answer}" if qa_answer else ack

    return qa_answer
