"""Text-completion client backed by the Anthropic Messages API.

Every orchestrator stage that needs a model (classification, continuity
detection, checklist synthesis, open-ended answers) goes through
``CompletionClient.complete``. Calls are stateless and time-bounded;
every failure surfaces as ``CompletionError`` so callers can degrade.

Environment Variables:
    ANTHROPIC_API_KEY: Read by the Anthropic SDK.
"""

import asyncio
import json
import logging
import re
from typing import Any, Protocol

from anthropic import AsyncAnthropic

from analysis_assistant.config import CompletionConfig

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


class CompletionError(Exception):
    """Completion call failed, timed out, or returned no text."""


class Completer(Protocol):
    """Anything that can turn a system prompt and messages into text."""

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
    ) -> str: ...


class CompletionClient:
    """Async wrapper around AsyncAnthropic.messages.create."""

    def __init__(
        self,
        config: CompletionConfig | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Model, timeout and token settings.
            client: Preconfigured SDK client. Created lazily when omitted.
        """
        self._config = config or CompletionConfig()
        self._client = client

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic()
        return self._client

    async def aclose(self) -> None:
        """Close the SDK client and its connection pool."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
    ) -> str:
        """Run one completion and return the concatenated text blocks.

        Args:
            system: System prompt.
            messages: Conversation as ``{"role", "content"}`` dicts.
            max_tokens: Overrides the configured token limit.

        Returns:
            Stripped response text.

        Raises:
            CompletionError: On SDK errors, timeout, or empty output.
        """
        try:
            response = await asyncio.wait_for(
                self._get_client().messages.create(
                    model=self._config.model,
                    max_tokens=max_tokens or self._config.max_tokens,
                    system=system,
                    messages=messages,
                ),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise CompletionError(
                f"completion timed out after {self._config.timeout_seconds}s"
            ) from e
        except Exception as e:
            raise CompletionError(f"completion failed: {type(e).__name__}") from e

        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        ).strip()
        if not text:
            raise CompletionError("completion returned no text")
        return text


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Pull a single JSON object out of model output.

    Accepts a bare object, a fenced ```json block, or an object embedded
    in surrounding prose.

    Returns:
        The decoded dict, or None when no object can be decoded.
    """
    if not text:
        return None

    candidates = []
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(text.strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    logger.debug("No JSON object in completion output (%d chars)", len(text))
    return None
