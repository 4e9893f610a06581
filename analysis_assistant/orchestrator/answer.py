"""Open-ended answers grounded in the gathered submission context."""

import logging

from analysis_assistant.errors import GENERIC_APOLOGY
from analysis_assistant.orchestrator.models import TurnContext
from analysis_assistant.orchestrator.prompts import build_answer_prompt
from analysis_assistant.services.context_aggregator import GatheredContext
from analysis_assistant.services.llm_client import Completer

logger = logging.getLogger(__name__)

MAX_SECTION_CHARS = 6000
MAX_LOG_CHARS = 4000
MAX_HISTORY_MESSAGES = 20

REJECTION_INSTRUCTION = (
    "The user declined the change you proposed. Confirm briefly that nothing "
    "was changed and ask what they would like to do instead."
)
ACTION_STARTED_INSTRUCTION = (
    "The change the user confirmed has been sent to the analysis service and is "
    "now running. Briefly explain what happens next. Do not repeat the checklist."
)
DISPATCH_FAILED_INSTRUCTION = (
    "You tried to start the requested change but the analysis service did not "
    "accept it. Do not claim the change was made. Answer the user's question "
    "and suggest trying again later."
)


def to_completion_messages(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Shape chat history for the Messages API.

    Keeps user and assistant turns only, merges consecutive turns of the
    same role, and drops leading assistant turns.
    """
    shaped: list[dict[str, str]] = []
    for message in messages[-MAX_HISTORY_MESSAGES:]:
        role = message.get("role")
        content = (message.get("content") or "").strip()
        if role not in ("user", "assistant") or not content:
            continue
        if not shaped and role == "assistant":
            continue
        if shaped and shaped[-1]["role"] == role:
            shaped[-1]["content"] += f"\n\n{content}"
        else:
            shaped.append({"role": role, "content": content})
    return shaped


def summarize_context(gathered: GatheredContext | None) -> str:
    """One line describing which context the answer was based on."""
    if gathered is None or not gathered.sources:
        return "No analysis context was available."
    parts = []
    if gathered.section_data is not None:
        parts.append("section data")
    if gathered.logs:
        sources = ", ".join(sorted(gathered.log_sources))
        parts.append(f"{len(gathered.logs)} log entries ({sources})")
    if gathered.step_status:
        parts.append(f"step status {gathered.step_status}")
    if not parts:
        return "Context sources responded but returned no data."
    return "Used " + "; ".join(parts) + "."


async def generate_answer(
    messages: list[dict[str, str]],
    context: TurnContext,
    completer: Completer,
    gathered: GatheredContext | None = None,
    dependency_note: str | None = None,
    instruction: str | None = None,
) -> str:
    """Answer the latest user message.

    Args:
        messages: Conversation, oldest first, latest user message last.
        context: Turn context.
        completer: Completion service.
        gathered: Context from the aggregator.
        dependency_note: Note to pass on to the user.
        instruction: Extra instruction for this turn.

    Returns:
        Answer text, or the generic apology when the completion fails.
    """
    system = build_answer_prompt(
        context,
        section_text=gathered.section_text(MAX_SECTION_CHARS) if gathered else "",
        transcript=gathered.transcript(MAX_LOG_CHARS) if gathered else "",
        step_status=gathered.step_status if gathered else None,
        dependency_note=dependency_note,
    )
    if instruction:
        system += f"\n\n{instruction}"

    shaped = to_completion_messages(messages)
    if not shaped or shaped[-1]["role"] != "user":
        logger.warning("No user message to answer")
        return GENERIC_APOLOGY

    try:
        return await completer.complete(system=system, messages=shaped)
    except Exception as e:
        logger.warning("Answer generation failed: %s", e)
        return GENERIC_APOLOGY
