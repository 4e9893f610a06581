"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. explicit path (``--config`` CLI flag or ``load_settings(path)``)
2. ./analysis_assistant.yaml (working directory)
3. ~/.analysis_assistant/config.yaml (user home)

Environment variables override YAML: ANALYSIS_ASSISTANT_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.

The confirmation gate thresholds live here as named settings so the
classifier, continuity detector and gate all read the same values.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "ANALYSIS_ASSISTANT_"

DEFAULT_WORKFLOW_BASE_URL = "http://127.0.0.1:8080/api"
DEFAULT_MODEL = "claude-sonnet-4-20250514"

# Named confidence cutoffs. The model reports confidence itself; these are
# policy values, not derived ones.
DISPATCH_CONFIDENCE_THRESHOLD = 0.7
DEPENDENCY_CHECK_THRESHOLD = 0.6
NEW_CONVERSATION_THRESHOLD = 0.7


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class WorkflowEngineConfig(BaseModel):
    """Connection settings for the remote analysis workflow engine."""

    base_url: str = DEFAULT_WORKFLOW_BASE_URL
    api_key: str = ""
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)
    dispatch_timeout_seconds: float = Field(default=15.0, gt=0)
    max_concurrent_fetches: int = Field(default=4, ge=1)


class CompletionConfig(BaseModel):
    """Settings for the text-completion service."""

    model: str = DEFAULT_MODEL
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=1024, ge=1)


class GateConfig(BaseModel):
    """Thresholds used by the classifier, continuity detector and gate."""

    dispatch_confidence_threshold: float = Field(
        default=DISPATCH_CONFIDENCE_THRESHOLD, ge=0, le=1
    )
    dependency_check_threshold: float = Field(
        default=DEPENDENCY_CHECK_THRESHOLD, ge=0, le=1
    )
    new_conversation_threshold: float = Field(
        default=NEW_CONVERSATION_THRESHOLD, ge=0, le=1
    )
    section_preview_chars: int = Field(default=200, ge=0)


class ServerConfig(BaseModel):
    """Settings for the HTTP server process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
    turn_timeout_seconds: float = Field(default=120.0, gt=0)


class AssistantSettings(BaseModel):
    """Top-level configuration for the analysis assistant."""

    workflow: WorkflowEngineConfig = WorkflowEngineConfig()
    completion: CompletionConfig = CompletionConfig()
    gate: GateConfig = GateConfig()
    server: ServerConfig = ServerConfig()


def _find_config_file() -> Path | None:
    """Search for a config file in the standard locations."""
    candidates = [
        Path.cwd() / "analysis_assistant.yaml",
        Path.cwd() / "analysis_assistant.yml",
        Path.home() / ".analysis_assistant" / "config.yaml",
        Path.home() / ".analysis_assistant" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _coerce_env_value(value: str) -> Any:
    """Coerce an env var string to int, float, bool, or keep as string."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply ANALYSIS_ASSISTANT_<SECTION>_<KEY> env var overrides.

    For example, ``ANALYSIS_ASSISTANT_WORKFLOW_BASE_URL`` maps to section
    ``workflow``, field ``base_url``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    known_sections = sorted(
        AssistantSettings.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_data = data.setdefault(matched_section, {})
        if isinstance(section_data, dict):
            section_data[matched_field] = _coerce_env_value(value)
    return data


def load_settings(config_path: str | None = None) -> AssistantSettings:
    """Load assistant settings from YAML with env var resolution.

    Unlike a missing explicit path, a missing default config file is not an
    error: defaults plus environment overrides are used.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.analysis_assistant/).

    Returns:
        Validated AssistantSettings.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    raw_data: dict[str, Any] = {}
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return AssistantSettings(**data)


@lru_cache(maxsize=1)
def get_settings() -> AssistantSettings:
    """Return process-wide settings, loaded once from the default locations."""
    return load_settings(os.environ.get("ANALYSIS_ASSISTANT_CONFIG") or None)
