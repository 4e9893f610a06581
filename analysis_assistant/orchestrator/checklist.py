"""Checklist synthesis for proposed workflow changes.

The checklist restates everything the user asked for across the whole
conversation. It is shown to the user as the confirmation text and sent
unchanged to the workflow engine as the instruction payload.
"""

import logging

from analysis_assistant.orchestrator.intent_detection import is_short_reply
from analysis_assistant.orchestrator.models import TurnContext
from analysis_assistant.orchestrator.prompts import (
    CHECKLIST_PREAMBLE,
    EMPTY_CHECKLIST,
    STEP_LABELS,
    build_checklist_prompt,
)
from analysis_assistant.services.llm_client import Completer

logger = logging.getLogger(__name__)

_NAIVE_MESSAGE_COUNT = 3
_MAX_BULLET_CHARS = 200


def user_requests(all_messages: list[dict[str, str]]) -> list[str]:
    """User message texts, without yes/no replies to earlier proposals."""
    return [
        m.get("content", "").strip()
        for m in all_messages
        if m.get("role") == "user"
        and m.get("content", "").strip()
        and not is_short_reply(m.get("content"))
    ]


def validate_checklist(text: str | None) -> bool:
    """True when text starts with the preamble and has at least one bullet."""
    if not text:
        return False
    stripped = text.strip()
    if not stripped.startswith(CHECKLIST_PREAMBLE):
        return False
    return any(
        line.strip().startswith("- ") and len(line.strip()) > 2
        for line in stripped.splitlines()[1:]
    )


def _clean(text: str) -> str:
    """Keep the preamble and bullet lines, drop anything else the model added."""
    bullets = [
        line.strip()
        for line in text.strip().splitlines()[1:]
        if line.strip().startswith("- ") and len(line.strip()) > 2
    ]
    return CHECKLIST_PREAMBLE + "\n\n" + "\n".join(bullets)


def _bullet(text: str) -> str:
    single_line = " ".join(text.split())
    if len(single_line) > _MAX_BULLET_CHARS:
        single_line = single_line[:_MAX_BULLET_CHARS - 3].rstrip() + "..."
    return f"- {single_line}"


def naive_checklist(requests: list[str]) -> str:
    """Checklist built from the last few requests verbatim."""
    if not requests:
        return EMPTY_CHECKLIST
    bullets = [_bullet(r) for r in requests[-_NAIVE_MESSAGE_COUNT:]]
    return CHECKLIST_PREAMBLE + "\n\n" + "\n".join(bullets)


def _with_extras(
    checklist: str,
    step: str,
    section_preview: str | None,
    dependency_note: str | None,
    preview_chars: int,
) -> str:
    parts = [checklist]
    if dependency_note:
        parts.append(f"Note: {dependency_note}")
    if section_preview and preview_chars > 0:
        preview = " ".join(section_preview.split())
        if len(preview) > preview_chars:
            preview = preview[:preview_chars].rstrip() + "..."
        label = STEP_LABELS.get(step, "section")
        parts.append(f"Current {label}: {preview}")
    return "\n\n".join(parts)


async def generate(
    all_messages: list[dict[str, str]],
    context: TurnContext,
    completer: Completer,
    step: str,
    section_preview: str | None = None,
    dependency_note: str | None = None,
    preview_chars: int = 200,
) -> str:
    """Build the checklist for a proposed change.

    Args:
        all_messages: Whole conversation, oldest first.
        context: Turn context for the prompt.
        completer: Completion service.
        step: Step the change targets.
        section_preview: Current section text, shown truncated.
        dependency_note: Note added when the step was rewritten.
        preview_chars: Maximum preview length.

    Returns:
        Checklist text without the confirmation question. With no user
        requests this is the fixed empty checklist.
    """
    requests = user_requests(all_messages)
    if not requests:
        return EMPTY_CHECKLIST

    checklist = None
    numbered = "\n".join(f"{i}. {r}" for i, r in enumerate(requests, start=1))
    try:
        text = await completer.complete(
            system=build_checklist_prompt(context, step),
            messages=[{"role": "user", "content": f"User requests:\n{numbered}"}],
            max_tokens=500,
        )
        if validate_checklist(text):
            checklist = _clean(text)
        else:
            logger.warning("Checklist output failed validation, using naive summary")
    except Exception as e:
        logger.warning("Checklist generation failed: %s", e)

    if checklist is None:
        checklist = naive_checklist(requests)
    return _with_extras(checklist, step, section_preview, dependency_note, preview_chars)
