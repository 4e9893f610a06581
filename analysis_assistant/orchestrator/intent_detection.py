"""Keyword heuristics for replies to a pending proposal."""

import re

from analysis_assistant.orchestrator.models import ConfirmationReply

_NEGATIVE_PATTERN = re.compile(
    r"\b(no|nope|cancel|hold off|don't|dont|do not|not now|wait|stop)\b",
)
_POSITIVE_PATTERN = re.compile(
    r"\b(yes|yep|yeah|proceed|confirm|confirmed|agree|go ahead|ok|okay|sure)\b",
)


def _normalize(message: str) -> str:
    text = message.strip().lower().replace("’", "'")
    return " ".join(text.split())


def classify_reply(message: str | None) -> ConfirmationReply:
    """Classify a reply as positive, negative or neither.

    A negative match wins over a positive one, so "yes, but wait" is
    negative.
    """
    if not message:
        return ConfirmationReply.none
    text = _normalize(message)
    if _NEGATIVE_PATTERN.search(text):
        return ConfirmationReply.negative
    if _POSITIVE_PATTERN.search(text):
        return ConfirmationReply.positive
    return ConfirmationReply.none


def is_short_reply(message: str | None, max_words: int = 6) -> bool:
    """True for short yes/no style replies that carry no new request."""
    if not message:
        return False
    return (
        len(_normalize(message).split()) <= max_words
        and classify_reply(message) != ConfirmationReply.none
    )
