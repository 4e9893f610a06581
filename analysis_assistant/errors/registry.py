"""Error code registry with E-XXXX format codes.

This module defines the error code system for the analysis assistant,
organizing errors into categories:
- E-1xxx: Identifier resolution errors
- E-2xxx: Request validation errors
- E-3xxx: Workflow engine errors
- E-4xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    IDENTIFIER = "identifier"  # E-1xxx
    VALIDATION = "validation"  # E-2xxx
    WORKFLOW = "workflow"  # E-3xxx
    SYSTEM = "system"  # E-4xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Identifier errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.IDENTIFIER,
        title="Submission Not Found",
        message_template="No submission found for '{identifier}'.",
        remediation="Check the project or submission id and retry.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.IDENTIFIER,
        title="Invalid Identifier",
        message_template="'{identifier}' is neither a submission UUID nor a project id.",
        remediation="Use the submission UUID or the numeric project id.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.IDENTIFIER,
        title="Project Has No Submissions",
        message_template="Project {identifier} has no submissions yet.",
        remediation="Start an analysis for the project before opening the assistant.",
    ),
    # Validation errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.VALIDATION,
        title="Empty Conversation",
        message_template="The chat request contains no user message.",
        remediation="Send at least one user message.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.VALIDATION,
        title="Unknown Analysis Step",
        message_template="Unknown analysis step '{step}'.",
        remediation="Use one of the workflow step identifiers.",
    ),
    # Workflow engine errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.WORKFLOW,
        title="Workflow Engine Unavailable",
        message_template="The analysis workflow engine did not respond: {details}",
        remediation="Wait a few minutes and retry.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.WORKFLOW,
        title="Workflow Engine Rejected Request",
        message_template="The workflow engine returned HTTP {status_code} for {operation}.",
        remediation="Retry later. Contact support if the issue persists.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.WORKFLOW,
        title="Unreadable Workflow Response",
        message_template="Could not parse the workflow engine response for {operation}.",
        remediation="Retry later. Contact support if the issue persists.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Completion Service Error",
        message_template="The completion service failed: {details}",
        remediation="Retry your message.",
        is_retryable=True,
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.SYSTEM,
        title="Turn Timed Out",
        message_template="The assistant did not finish within {seconds} seconds.",
        remediation="Send your message again.",
        is_retryable=True,
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
