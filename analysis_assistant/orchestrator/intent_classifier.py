"""Intent classification for chat requests.

Maps a free-text message to a (step, action, confidence) Classification
using the completion service. Classification never fails a turn: any
malformed, missing or late model output becomes the unknown
classification with confidence 0.

Example:
    classification = await classify(message, context, completer)
    classification, note = await apply_dependency_check(
        classification, partial(engine.has_deployment_instructions, submission_id)
    )
"""

import logging
from typing import Any, Awaitable, Callable

from analysis_assistant.config import DEPENDENCY_CHECK_THRESHOLD
from analysis_assistant.orchestrator.models import (
    MUTATING_ACTIONS,
    Classification,
    RequestAction,
    TargetStep,
    TurnContext,
)
from analysis_assistant.orchestrator.prompts import (
    DEPENDENCY_NOTE,
    build_classifier_prompt,
)
from analysis_assistant.services.llm_client import Completer, extract_json_object

logger = logging.getLogger(__name__)

# Model answers that mean "just answer the user"
_GUIDANCE_ACTIONS = frozenset({"needs_followup", "needs_guidance"})
_CLARIFY_ALIASES = frozenset({"explain", "question", "ask"})


def _coerce_step(value: Any) -> TargetStep:
    try:
        return TargetStep(str(value).strip().lower())
    except ValueError:
        return TargetStep.unknown


def parse_classification(raw: dict[str, Any] | None) -> Classification:
    """Normalize a decoded model answer into a Classification.

    Unknown enum values become ``unknown``, confidence is clamped to
    [0, 1], and ``needs_followup`` becomes a non-actionable ``clarify``
    with ``needs_guidance`` set.

    Args:
        raw: Decoded JSON object, or None.

    Returns:
        Classification; the unknown one when raw is None.
    """
    if not raw:
        return Classification.unknown("No classification returned")

    step = _coerce_step(raw.get("step"))
    action_text = str(raw.get("action", "")).strip().lower()
    needs_guidance = False
    if action_text in _GUIDANCE_ACTIONS:
        action = RequestAction.clarify
        needs_guidance = True
    elif action_text in _CLARIFY_ALIASES:
        action = RequestAction.clarify
    else:
        try:
            action = RequestAction(action_text)
        except ValueError:
            action = RequestAction.unknown

    is_actionable = raw.get("is_actionable", raw.get("isActionable", False)) is True
    if action not in MUTATING_ACTIONS or step == TargetStep.unknown:
        is_actionable = False

    explanation = raw.get("explanation")
    return Classification(
        step=step,
        action=action,
        confidence=raw.get("confidence", 0.0),
        explanation=explanation if isinstance(explanation, str) else "",
        is_actionable=is_actionable,
        needs_guidance=needs_guidance,
    )


async def classify(
    user_message: str,
    context: TurnContext,
    completer: Completer,
) -> Classification:
    """Classify one user message.

    Args:
        user_message: Latest user message text.
        context: Project name, section and current step.
        completer: Completion service.

    Returns:
        Classification. Never raises.
    """
    if not user_message or not user_message.strip():
        return Classification.unknown("Empty message")

    try:
        text = await completer.complete(
            system=build_classifier_prompt(context),
            messages=[{"role": "user", "content": user_message}],
            max_tokens=300,
        )
    except Exception as e:
        logger.warning("Classification failed: %s", e)
        return Classification.unknown("Classifier unavailable")

    raw = extract_json_object(text)
    if raw is None:
        logger.warning("Classifier returned no JSON object")
        return Classification.unknown("Classifier output was not JSON")

    classification = parse_classification(raw)
    logger.info(
        "Classified step=%s action=%s confidence=%.2f actionable=%s",
        classification.step.value,
        classification.action.value,
        classification.confidence,
        classification.is_actionable,
    )
    return classification


async def apply_dependency_check(
    classification: Classification,
    probe: Callable[[], Awaitable[bool]],
    threshold: float = DEPENDENCY_CHECK_THRESHOLD,
) -> tuple[Classification, str | None]:
    """Redirect script implementation requests that lack deployment instructions.

    Only ``implement_deployment_script`` classifications at or above the
    threshold are probed. When the probe reports no deployment
    instructions, the step becomes ``analyze_deployment`` and a note for
    the user is returned.

    Args:
        classification: Classification to check.
        probe: Async callable returning True when instructions exist.
        threshold: Minimum confidence for the check to apply.

    Returns:
        ``(classification, note)``; note is None when nothing changed.
    """
    if (
        classification.step != TargetStep.implement_deployment_script
        or classification.confidence < threshold
    ):
        return classification, None

    try:
        has_instructions = await probe()
    except Exception as e:
        logger.warning("Deployment instructions probe failed: %s", e)
        has_instructions = False

    if has_instructions:
        return classification, None

    logger.info("Rewriting implement_deployment_script to analyze_deployment")
    rewritten = classification.model_copy(update={
        "step": TargetStep.analyze_deployment,
        "explanation": (
            f"{classification.explanation} (deployment instructions missing)".strip()
        ),
    })
    return rewritten, DEPENDENCY_NOTE
