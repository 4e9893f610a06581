"""Gather section data, step status and logs for one chat turn.

Sources per turn:

- local step record (``json_data``, ``details``)
- the step's dedicated summary endpoint, when it has one
- the generic submission bundle ``/submission/{id}``
- the remote execution history ``/submission/{id}/history``

All four run concurrently under a semaphore, each time-bounded. A failing
source is logged and left out; the turn continues with what arrived.

Section data resolution follows ``STEP_SOURCES``: for steps whose
dedicated endpoint is authoritative the remote summary wins over the
local cache; for the others the local cache wins over the bundle.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any, Awaitable, Callable

from analysis_assistant.config import WorkflowEngineConfig
from analysis_assistant.db.models import StepId
from analysis_assistant.errors import ContextFetchError
from analysis_assistant.services.step_records import StepRecordService, normalize_status
from analysis_assistant.services.verification_logs import (
    explain_verification_error,
    parse_verification_logs,
)
from analysis_assistant.services.workflow_client import WorkflowClient

logger = logging.getLogger(__name__)

GENERIC_ENDPOINT = "/submission/{id}"

# UI section name -> step it displays
SECTION_STEPS: dict[str, StepId] = {
    "project_summary": StepId.analyze_project,
    "actor_summary": StepId.analyze_actors,
    "actors_summary": StepId.analyze_actors,
    "deployment_instructions": StepId.analyze_deployment,
    "implementation": StepId.implement_deployment_script,
    "verification": StepId.verify_deployment_script,
}

_EPOCH = datetime.min.replace(tzinfo=UTC)


async def _no_result() -> None:
    return None


@dataclass(frozen=True)
class LogEntry:
    """One source-tagged log fragment."""

    source: str
    timestamp: str
    text: str


@dataclass
class SourceResult:
    """What a parser extracted from one payload."""

    section_data: Any = None
    logs: list[LogEntry] = field(default_factory=list)
    statuses: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StepSource:
    """How to fetch and read context for a step.

    Attributes:
        endpoint: Path template with an ``{id}`` placeholder.
        parser: ``(payload, step) -> SourceResult``.
        is_authoritative: Remote data wins over the local cache.
    """

    endpoint: str
    parser: Callable[[Any, StepId | None], SourceResult]
    is_authoritative: bool

    @property
    def is_dedicated(self) -> bool:
        return self.endpoint != GENERIC_ENDPOINT


@dataclass
class GatheredContext:
    """Everything the answer generator and gate know about the submission.

    Attributes:
        section_data: Data for the current step, or None.
        logs: Merged log fragments ordered by timestamp.
        step_status: Status of the current step, remote over local.
        sources: Names of the sources that contributed.
        remote_statuses: Step statuses reported by the remote bundle.
    """

    section_data: Any = None
    logs: list[LogEntry] = field(default_factory=list)
    step_status: str | None = None
    sources: set[str] = field(default_factory=set)
    remote_statuses: dict[str, str] = field(default_factory=dict)

    @property
    def log_sources(self) -> set[str]:
        return {entry.source for entry in self.logs}

    def section_text(self, max_chars: int | None = None) -> str:
        """Section data as text, optionally truncated."""
        if self.section_data is None:
            return ""
        if isinstance(self.section_data, str):
            text = self.section_data
        else:
            text = json.dumps(self.section_data, indent=2, default=str)
        if max_chars is not None and len(text) > max_chars:
            return text[:max_chars].rstrip() + "..."
        return text

    def transcript(self, max_chars: int | None = None) -> str:
        """Logs rendered as ``[timestamp] [source] text`` lines.

        When truncated, the most recent lines are kept.
        """
        lines = [
            f"[{entry.timestamp or '-'}] [{entry.source}] {entry.text}"
            for entry in self.logs
        ]
        text = "\n".join(lines)
        if max_chars is not None and len(text) > max_chars:
            return "..." + text[-max_chars:]
        return text


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _first_str(data: dict, *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _non_empty(value: Any) -> Any:
    if value in (None, "", [], {}):
        return None
    return value


def _section_parser(key: str) -> Callable[[Any, StepId], SourceResult]:
    """Parser for a dedicated summary endpoint keyed by ``key``."""

    def parse(payload: Any, step: StepId) -> SourceResult:
        data = payload
        if isinstance(payload, dict):
            if key in payload:
                data = payload[key]
            elif "content" in payload:
                data = payload["content"]
        result = SourceResult(section_data=_non_empty(data))
        if isinstance(payload, dict):
            status = normalize_status(payload.get("status"))
            if status is not None:
                result.statuses[step.value] = status.value
        return result

    return parse


def _parse_source(
    name: str,
    parser: Callable[[Any, StepId | None], SourceResult],
    payload: Any,
    step: StepId | None,
) -> SourceResult | None:
    """Run one source's parser; None when the payload cannot be read."""
    try:
        return parser(payload, step)
    except Exception as e:
        logger.warning(
            "Context source %s returned an unreadable payload: %s",
            name, type(e).__name__,
        )
        return None


def _bundle_statuses(bundle: dict) -> dict[str, str]:
    statuses: dict[str, str] = {}
    raw = bundle.get("step_status")
    if isinstance(raw, dict):
        for name, value in raw.items():
            if isinstance(value, dict):
                value = value.get("status")
            status = normalize_status(value)
            if status is not None:
                statuses[str(name)] = status.value
    elif isinstance(raw, list):
        for item in raw:
            if isinstance(item, dict):
                status = normalize_status(item.get("status"))
                name = item.get("step") or item.get("step_id")
                if name and status is not None:
                    statuses[str(name)] = status.value
    completed = bundle.get("completed_steps")
    for item in completed if isinstance(completed, list) else []:
        name = item.get("step") if isinstance(item, dict) else item
        if isinstance(name, str):
            statuses[name] = "completed"
    return statuses


def _bundle_logs(bundle: dict) -> list[LogEntry]:
    stamp = _first_str(bundle, "updated_at", "completed_at", "created_at")
    raw = bundle.get("log")
    if isinstance(raw, str) and raw.strip():
        return [LogEntry("bundle", stamp, raw.strip())]
    entries = []
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, dict):
                text = _first_str(item, "message", "text", "details")
                if text:
                    entries.append(LogEntry(
                        "bundle", _first_str(item, "timestamp", "created_at") or stamp, text
                    ))
            elif item:
                entries.append(LogEntry("bundle", stamp, str(item)))
    return entries


def parse_bundle(payload: Any, step: StepId | None) -> SourceResult:
    """Parser for the generic submission bundle.

    Without a step only logs and statuses are read.
    """
    if not isinstance(payload, dict):
        return SourceResult()
    metadata = payload.get("step_metadata")
    section = None
    if step is not None:
        if isinstance(metadata, dict):
            section = metadata.get(step.value)
        if section is None:
            section = payload.get(step.value)
    return SourceResult(
        section_data=_non_empty(section),
        logs=_bundle_logs(payload),
        statuses=_bundle_statuses(payload),
    )


def parse_verification_bundle(payload: Any, step: StepId | None) -> SourceResult:
    """Generic bundle parser plus normalized verification output."""
    result = parse_bundle(payload, step)
    if not isinstance(payload, dict) or step is None:
        return result
    metadata = payload.get("step_metadata")
    if not isinstance(metadata, dict) or step.value not in metadata:
        return result

    verification = parse_verification_logs(metadata)
    stamp = _first_str(payload, "updated_at", "completed_at", "created_at")
    text = verification.logs
    if not verification.succeeded:
        text = f"{text}\n{explain_verification_error(verification.logs)}"
    result.logs.append(LogEntry("verification", stamp, text))
    result.section_data = {
        "return_code": verification.return_code,
        "contract_addresses": verification.contract_addresses,
        "error": verification.error,
        "logs": verification.logs,
    }
    return result


def parse_history(payload: Any, step: StepId | None) -> SourceResult:
    """Log entries from the remote execution history, filtered to ``step``."""
    result = SourceResult()
    if not isinstance(payload, list):
        return result
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        entry_step = _first_str(entry, "step")
        if step is not None and entry_step and entry_step != step.value:
            continue
        status = entry.get("status")
        detail = _first_str(entry, "details", "message")
        parts = (entry_step, str(status) if status is not None else "", detail)
        text = " ".join(part for part in parts if part)
        if text:
            result.logs.append(LogEntry(
                "history",
                _first_str(entry, "executed_at", "created_at", "timestamp"),
                text,
            ))
    return result


STEP_SOURCES: dict[StepId, StepSource] = {
    StepId.analyze_project: StepSource(
        "/submission/{id}/project_summary", _section_parser("project_summary"), True
    ),
    StepId.analyze_actors: StepSource(
        "/submission/{id}/actors_summary", _section_parser("actors_summary"), True
    ),
    StepId.analyze_deployment: StepSource(
        "/submission/{id}/deployment_instructions",
        _section_parser("deployment_instructions"),
        True,
    ),
    StepId.implement_deployment_script: StepSource(GENERIC_ENDPOINT, parse_bundle, False),
    StepId.verify_deployment_script: StepSource(
        GENERIC_ENDPOINT, parse_verification_bundle, False
    ),
}


def resolve_step(step: str | None, section: str | None = None) -> StepId | None:
    """The workflow step a turn is about, from the explicit step or the section."""
    if step:
        try:
            return StepId(step)
        except ValueError:
            pass
    if section:
        return SECTION_STEPS.get(section)
    return None


class ContextAggregator:
    """Collects turn context from the local cache and the workflow engine.

    Args:
        steps: Local step record service.
        engine: Workflow engine client.
        config: Fan-out and timeout settings. Defaults to the engine's.
    """

    def __init__(
        self,
        steps: StepRecordService,
        engine: WorkflowClient,
        config: WorkflowEngineConfig | None = None,
    ) -> None:
        self._steps = steps
        self._engine = engine
        self._config = config or engine.config

    def _read_local(self, submission_id: str, step: StepId | None) -> dict[str, Any]:
        statuses = {
            s.step_id: s.status for s in self._steps.list_steps(submission_id)
        }
        snapshot: dict[str, Any] = {"statuses": statuses, "json_data": None, "log": None}
        if step is None:
            return snapshot
        record = self._steps.get_step(submission_id, step.value)
        if record is not None:
            snapshot["json_data"] = self._steps.get_json_data(submission_id, step.value)
            if record.details:
                snapshot["log"] = LogEntry("local", record.updated_at, record.details)
        return snapshot

    async def _bounded(
        self,
        name: str,
        semaphore: asyncio.Semaphore,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one source under the semaphore; None on failure."""
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    call(), timeout=self._config.fetch_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Context source %s timed out", name)
            except ContextFetchError as e:
                logger.warning("Context source %s failed: %s", name, e.reason)
            except Exception as e:
                logger.warning(
                    "Context source %s failed unexpectedly: %s", name, type(e).__name__
                )
        return None

    async def gather(
        self,
        submission_id: str,
        step: str | None,
        section: str | None = None,
    ) -> GatheredContext:
        """Collect context for a submission and step.

        Args:
            submission_id: Submission UUID.
            step: StepId value the turn is about, or None.
            section: UI section, used when step is absent.

        Returns:
            GatheredContext. Never raises for source failures.
        """
        step_id = resolve_step(step, section)
        source = STEP_SOURCES.get(step_id) if step_id else None
        semaphore = asyncio.Semaphore(self._config.max_concurrent_fetches)

        dedicated_call = (
            partial(self._engine.get_section, source.endpoint, submission_id)
            if source is not None and source.is_dedicated
            else _no_result
        )

        local, dedicated, bundle, history = await asyncio.gather(
            self._bounded(
                "local", semaphore,
                partial(asyncio.to_thread, self._read_local, submission_id, step_id),
            ),
            self._bounded("dedicated", semaphore, dedicated_call),
            self._bounded(
                "bundle", semaphore, partial(self._engine.get_submission, submission_id)
            ),
            self._bounded(
                "history", semaphore, partial(self._engine.get_history, submission_id)
            ),
        )
        return self._merge(step_id, source, local, dedicated, bundle, history)

    def _merge(
        self,
        step_id: StepId | None,
        source: StepSource | None,
        local: dict[str, Any] | None,
        dedicated: Any,
        bundle: dict[str, Any] | None,
        history: list[dict[str, Any]] | None,
    ) -> GatheredContext:
        context = GatheredContext()
        logs: list[LogEntry] = []
        statuses: dict[str, str] = {}

        dedicated_result = None
        if dedicated is not None and source is not None and step_id is not None:
            dedicated_result = _parse_source("dedicated", source.parser, dedicated, step_id)
            if dedicated_result is not None:
                context.sources.add("dedicated")

        bundle_result = None
        if bundle is not None:
            parser = source.parser if source and not source.is_dedicated else parse_bundle
            bundle_result = _parse_source("bundle", parser, bundle, step_id)
        if bundle_result is not None:
            context.sources.add("bundle")
            context.remote_statuses = dict(bundle_result.statuses)
            logs.extend(bundle_result.logs)
        if dedicated_result is not None:
            context.remote_statuses.update(dedicated_result.statuses)

        local_data = None
        if local is not None:
            context.sources.add("local")
            statuses.update(local["statuses"])
            local_data = _non_empty(local["json_data"])
            if local["log"] is not None:
                logs.append(local["log"])
        statuses.update(context.remote_statuses)

        history_result = (
            _parse_source("history", parse_history, history, step_id)
            if history is not None
            else None
        )
        if history_result is not None:
            context.sources.add("history")
            logs.extend(history_result.logs)

        dedicated_data = dedicated_result.section_data if dedicated_result else None
        bundle_data = bundle_result.section_data if bundle_result else None
        if source is not None and source.is_authoritative:
            candidates = (dedicated_data, local_data, bundle_data)
        else:
            candidates = (local_data, bundle_data)
        context.section_data = next((c for c in candidates if c is not None), None)

        context.logs = sorted(logs, key=lambda e: _parse_timestamp(e.timestamp))
        if step_id is not None:
            context.step_status = statuses.get(step_id.value)
        return context
