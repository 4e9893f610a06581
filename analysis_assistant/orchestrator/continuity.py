"""Conversation continuity detection.

Decides whether a turn continues the current conversation thread or
starts a new one. The verdict comes from the completion service and is
not stable across retries of the same turn; callers that need a stable
thread pass an explicit conversation id.
"""

import logging
from typing import Callable

from analysis_assistant.config import NEW_CONVERSATION_THRESHOLD
from analysis_assistant.db.models import generate_uuid
from analysis_assistant.orchestrator.models import (
    ContinuityResult,
    ConversationType,
    TurnContext,
)
from analysis_assistant.orchestrator.prompts import build_continuity_prompt
from analysis_assistant.services.llm_client import Completer, extract_json_object

logger = logging.getLogger(__name__)

# Earlier messages shown to the detector
_MAX_PRIOR_MESSAGES = 10


async def classify_conversation(
    latest_message: str,
    prior_messages: list[dict[str, str]],
    context: TurnContext,
    completer: Completer,
) -> ContinuityResult:
    """Judge whether the latest message starts a new conversation.

    Returns:
        ContinuityResult. Failures yield ``continue_conversation`` with
        confidence 0.
    """
    history = "\n".join(
        f"{m.get('role', 'user')}: {m.get('content', '')}"
        for m in prior_messages[-_MAX_PRIOR_MESSAGES:]
    )
    try:
        text = await completer.complete(
            system=build_continuity_prompt(context),
            messages=[{
                "role": "user",
                "content": (
                    f"Earlier messages:\n{history}\n\nLatest message:\n{latest_message}"
                ),
            }],
            max_tokens=200,
        )
    except Exception as e:
        logger.warning("Continuity detection failed: %s", e)
        return ContinuityResult(explanation="Continuity detector unavailable")

    raw = extract_json_object(text)
    if raw is None:
        return ContinuityResult(explanation="Continuity output was not JSON")
    try:
        kind = ConversationType(str(raw.get("type", "")).strip().lower())
    except ValueError:
        return ContinuityResult(explanation="Unrecognized continuity verdict")
    explanation = raw.get("explanation")
    return ContinuityResult(
        type=kind,
        confidence=raw.get("confidence", 0.0),
        explanation=explanation if isinstance(explanation, str) else "",
    )


async def resolve_conversation_id(
    supplied_id: str | None,
    messages: list[dict[str, str]],
    context: TurnContext,
    completer: Completer,
    latest_for_section: Callable[[], str | None],
    threshold: float = NEW_CONVERSATION_THRESHOLD,
) -> tuple[str, ContinuityResult | None]:
    """Pick the conversation id for a turn.

    A supplied id always wins. With fewer than two messages a new id is
    minted. Otherwise the detector runs; a confident new-conversation
    verdict mints an id, anything else reuses the latest conversation of
    the (submission, section) pair, or mints one if there is none.

    Args:
        supplied_id: Conversation id sent by the client, if any.
        messages: All messages of the request, latest last.
        context: Turn context for the detector prompt.
        completer: Completion service.
        latest_for_section: Returns the most recent stored conversation id.
        threshold: Confidence above which a new conversation is started.

    Returns:
        ``(conversation_id, continuity_result)``; the result is None when
        the detector did not run.
    """
    if supplied_id:
        return supplied_id, None
    if len(messages) < 2:
        return generate_uuid(), None

    result = await classify_conversation(
        messages[-1].get("content", ""), messages[:-1], context, completer
    )
    if (
        result.type == ConversationType.new_conversation
        and result.confidence > threshold
    ):
        logger.info("Starting new conversation (confidence %.2f)", result.confidence)
        return generate_uuid(), result

    return latest_for_section() or generate_uuid(), result
