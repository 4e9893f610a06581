"""Parsing of deployment-script verification output.

The workflow engine reports ``verify_deployment_script`` metadata in one
of three shapes:

- ``[return_code, contract_addresses, stdout, stderr]`` (list, possibly
  JSON-encoded as a string)
- ``{"log": str | list[str]}``
- a plain string

``parse_verification_logs`` normalizes all three into a
``VerificationResult``; ``explain_verification_error`` turns the most
relevant error line into a sentence the answer generator can use.
"""

import json
import logging
import re
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

VERIFY_STEP_KEY = "verify_deployment_script"

# Ordered most to least specific.
_ERROR_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("syntax", re.compile(r"SyntaxError: ([^\n]+)")),
    ("type", re.compile(r"TypeError: ([^\n]+)")),
    ("error", re.compile(r"Error: ([^\n]+)")),
    ("error", re.compile(r"\berror\b[:\s]*([^\n]+)", re.IGNORECASE)),
)

_SHORT_LOG_CHARS = 100
_GENERIC_FAILURE = "Verification failed. Check the logs for detailed error information."


class VerificationResult(BaseModel):
    """Normalized verification output."""

    logs: str
    error: str | None = None
    return_code: int | None = None
    contract_addresses: Any = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.return_code in (None, 0)


def _maybe_decode(data: Any) -> Any:
    if isinstance(data, str):
        stripped = data.strip()
        if stripped.startswith(("[", "{")):
            try:
                return json.loads(stripped)
            except json.JSONDecodeError:
                logger.warning("Verification data looks like JSON but does not parse")
    return data


def parse_verification_logs(step_metadata: dict | None) -> VerificationResult:
    """Normalize ``step_metadata['verify_deployment_script']``.

    Args:
        step_metadata: The ``step_metadata`` mapping from the submission
            bundle, or None.

    Returns:
        VerificationResult. Missing or unrecognized data produces a result
        with ``error`` set rather than raising.
    """
    if not step_metadata or VERIFY_STEP_KEY not in step_metadata:
        return VerificationResult(
            logs="No verification logs found.",
            error="Missing verify_deployment_script data",
        )

    data = _maybe_decode(step_metadata[VERIFY_STEP_KEY])

    if isinstance(data, list):
        padded = list(data) + [None] * (4 - len(data))
        return_code, contract_addresses, stdout, stderr = padded[:4]
        try:
            code = int(return_code) if return_code is not None else None
        except (TypeError, ValueError):
            code = None

        parts = []
        if stdout:
            parts.append(f"=== STDOUT ===\n{stdout}\n")
        if stderr:
            parts.append(f"=== STDERR ===\n{stderr}")
        logs = "\n".join(parts)
        if not logs:
            logs = (
                "Verification completed successfully with no output."
                if code == 0
                else f"Verification failed with return code {return_code}."
            )
        return VerificationResult(
            logs=logs,
            return_code=code,
            contract_addresses=contract_addresses,
            error=None if code == 0 else f"Verification failed with code {return_code}",
        )

    if isinstance(data, dict) and data.get("log"):
        log = data["log"]
        if isinstance(log, list):
            return VerificationResult(logs="\n".join(str(line) for line in log))
        return VerificationResult(logs=str(log))

    if isinstance(data, str):
        return VerificationResult(logs=data)

    return VerificationResult(
        logs="Verification logs format is invalid", error="Invalid log format"
    )


def extract_error_message(logs: str) -> tuple[str, str]:
    """Find the most relevant error line in verification output.

    Returns:
        ``(kind, message)`` where kind is ``syntax``, ``type``, ``error``
        or ``unknown``.
    """
    for kind, pattern in _ERROR_PATTERNS:
        match = pattern.search(logs)
        if match and match.group(1).strip():
            return kind, match.group(1).strip()

    if len(logs) < _SHORT_LOG_CHARS:
        return "unknown", logs.strip()
    return "unknown", _GENERIC_FAILURE


def explain_verification_error(logs: str) -> str:
    """Explain a verification failure in one or two sentences."""
    kind, message = extract_error_message(logs)

    if kind == "syntax":
        return (
            f"The deployment script has a syntax error: {message}. "
            "This is likely a JavaScript syntax issue in the deployment code."
        )
    if "already been declared" in message:
        return (
            f"The deployment script has a duplicate variable declaration: {message}. "
            "Rename one of the variables or remove the duplicate declaration."
        )
    if "is not defined" in message or "is not a function" in message:
        return (
            "The deployment script references a function or variable that "
            f"doesn't exist: {message}. Make sure all dependencies are imported "
            "and variables are defined."
        )
    return (
        f"The verification failed with error: {message}. "
        "Please review the detailed logs for more information."
    )
