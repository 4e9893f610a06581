"""Typed domain exceptions for turn-level error mapping.

Each failure class of a chat turn has its own exception so the turn
handler can decide, by type, whether to degrade (omit a context source,
skip a dispatch, drop a persistence write) or to end the turn.

Usage:
    # In service layer
    raise IdentifierResolutionError(ref, "E-1001")

    # In route handler
    try:
        submission = resolver.resolve(ref)
    except IdentifierResolutionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class IdentifierResolutionError(DomainError):
    """Submission reference could not be resolved.

    Terminal for the turn. Unknown ids map to HTTP 404, malformed ones
    to HTTP 400.

    Attributes:
        identifier: The reference as supplied by the caller.
        error_code: Registry code (E-1xxx) describing the failure.
    """

    def __init__(self, identifier: str, error_code: str = "E-1001") -> None:
        super().__init__(f"Could not resolve submission '{identifier}'")
        self.identifier = identifier
        self.error_code = error_code

    @property
    def status_code(self) -> int:
        return 400 if self.error_code == "E-1002" else 404


class ContextFetchError(DomainError):
    """A context source (local or remote) failed. The source is omitted.

    Attributes:
        source: Name of the failing source (endpoint path or 'local').
        reason: Short description of the failure.
        status_code: HTTP status for remote failures, None otherwise.
    """

    def __init__(
        self, source: str, reason: str, status_code: int | None = None
    ) -> None:
        super().__init__(f"Context source '{source}' failed: {reason}")
        self.source = source
        self.reason = reason
        self.status_code = status_code


class DispatchError(DomainError):
    """The mutating call to the workflow engine failed.

    Attributes:
        step: Step that was being dispatched.
        status_code: HTTP status returned, or None for network errors
            and timeouts.
    """

    def __init__(
        self, step: str, reason: str, status_code: int | None = None
    ) -> None:
        super().__init__(f"Dispatch of '{step}' failed: {reason}")
        self.step = step
        self.reason = reason
        self.status_code = status_code


class PersistenceError(DomainError):
    """A local store write failed. Logged only, never surfaced."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"Persistence '{operation}' failed: {reason}")
        self.operation = operation
        self.reason = reason
