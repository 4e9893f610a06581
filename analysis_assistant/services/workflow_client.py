"""HTTP client for the remote analysis workflow engine.

Thin wrapper around httpx. Read calls raise ``ContextFetchError`` and the
mutating ``POST /analyze`` raises ``DispatchError`` so callers can apply
the right degradation by type. The base URL and bearer key are injected
configuration; nothing here reads the environment.
"""

import asyncio
import logging
from typing import Any

import httpx

from analysis_assistant.config import WorkflowEngineConfig
from analysis_assistant.errors import ContextFetchError, DispatchError
from analysis_assistant.utils.redaction import redact_for_logging, sanitize_text

logger = logging.getLogger(__name__)


class WorkflowClient:
    """Async client for the workflow engine REST API.

    Usage:
        async with WorkflowClient(settings.workflow) as engine:
            bundle = await engine.get_submission(submission_id)
    """

    def __init__(
        self,
        config: WorkflowEngineConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize with engine settings.

        Args:
            config: Base URL, API key and timeouts.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> WorkflowEngineConfig:
        return self._config

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    async def __aenter__(self) -> "WorkflowClient":
        """Open the httpx client."""
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                timeout=self._config.fetch_timeout_seconds,
                headers=self._headers(),
                transport=self._transport,
            )
            logger.debug(
                "Workflow client opened: %s",
                redact_for_logging({
                    "base_url": self._config.base_url,
                    "headers": self._headers(),
                }),
            )
        return self._client

    async def aclose(self) -> None:
        """Close the httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str) -> Any:
        """GET a path and decode its JSON body.

        Args:
            path: Path relative to the configured base URL.

        Returns:
            Decoded JSON body.

        Raises:
            ContextFetchError: On network error, timeout, non-2xx status,
                or an undecodable body.
        """
        client = self._ensure_client()
        try:
            resp = await asyncio.wait_for(
                client.get(path),
                timeout=self._config.fetch_timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ContextFetchError(path, "timed out") from e
        except httpx.HTTPError as e:
            raise ContextFetchError(path, f"{type(e).__name__}") from e

        if resp.status_code >= 400:
            raise ContextFetchError(
                path,
                f"HTTP {resp.status_code}: {sanitize_text(resp.text, 300)}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ContextFetchError(path, "response is not JSON") from e

    async def get_section(self, endpoint: str, submission_id: str) -> Any:
        """Fetch a step's dedicated summary endpoint."""
        return await self.get_json(endpoint.format(id=submission_id))

    async def get_submission(self, submission_id: str) -> dict[str, Any]:
        """Fetch the generic status and log bundle for a submission."""
        data = await self.get_json(f"/submission/{submission_id}")
        if not isinstance(data, dict):
            raise ContextFetchError(f"/submission/{submission_id}", "bundle is not an object")
        return data

    async def get_history(self, submission_id: str) -> list[dict[str, Any]]:
        """Fetch the remote execution history for a submission.

        Accepts either a bare list or an object with a ``history`` list.
        """
        data = await self.get_json(f"/submission/{submission_id}/history")
        if isinstance(data, dict):
            data = data.get("history", [])
        if not isinstance(data, list):
            raise ContextFetchError(
                f"/submission/{submission_id}/history", "history is not a list"
            )
        return [entry for entry in data if isinstance(entry, dict)]

    async def has_deployment_instructions(self, submission_id: str) -> bool:
        """Probe whether deployment instructions exist upstream.

        Any failure (404 included) counts as missing.
        """
        try:
            data = await self.get_json(
                f"/submission/{submission_id}/deployment_instructions"
            )
        except ContextFetchError as e:
            logger.info(
                "Deployment instructions unavailable for %s: %s",
                submission_id, e.reason,
            )
            return False
        if isinstance(data, dict):
            payload = data.get("deployment_instructions", data.get("content", data))
            return bool(payload)
        return bool(data)

    async def dispatch(
        self, submission_id: str, step: str, user_prompt: str
    ) -> dict[str, Any]:
        """Ask the engine to recompute a step. Never retried.

        Args:
            submission_id: Submission UUID.
            step: StepId value to rerun.
            user_prompt: Checklist text, passed through opaquely.

        Returns:
            Decoded response body, or an empty dict when the body is not JSON.

        Raises:
            DispatchError: On non-2xx status, network error, or timeout.
        """
        client = self._ensure_client()
        payload = {
            "submission_id": submission_id,
            "step": step,
            "user_prompt": user_prompt,
        }
        timeout = self._config.dispatch_timeout_seconds
        try:
            resp = await asyncio.wait_for(
                client.post("/analyze", json=payload, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise DispatchError(step, f"timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise DispatchError(step, type(e).__name__) from e

        if resp.status_code >= 400:
            raise DispatchError(
                step,
                f"HTTP {resp.status_code}: {sanitize_text(resp.text, 300)}",
                status_code=resp.status_code,
            )
        logger.info(
            "Dispatched step=%s submission=%s status=%d",
            step, submission_id, resp.status_code,
        )
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"result": body}
