"""Error handling framework for the analysis assistant.

This package provides:
- Error code registry with E-XXXX format codes
- AssistantError and user-facing formatting
- Typed domain exceptions for turn-level failure handling

Error categories:
- E-1xxx: Identifier resolution errors
- E-2xxx: Validation errors
- E-3xxx: Workflow engine errors
- E-4xxx: System/internal errors
"""

from analysis_assistant.errors.domain import (
    ContextFetchError,
    DispatchError,
    DomainError,
    IdentifierResolutionError,
    PersistenceError,
)
from analysis_assistant.errors.formatter import (
    GENERIC_APOLOGY,
    AssistantError,
    format_error,
)
from analysis_assistant.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "AssistantError",
    "GENERIC_APOLOGY",
    "format_error",
    # Domain
    "DomainError",
    "IdentifierResolutionError",
    "ContextFetchError",
    "DispatchError",
    "PersistenceError",
]
