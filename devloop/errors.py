"""
Error taxonomy for devloop.

Every rejection carries enough detail for the caller to fix all blockers in
one pass:
- UsageError: caller mistake (bad stage, status or format name)
- ValidationFailed: business rule blocks the transition, lists every reason
- NotFoundError: referenced issue or spec does not exist
- PersistenceError: durable state cannot be read, written or relocated
- VCSError / TrackerError: external collaborator failures

A failed test run is not an exception; see devloop.tcr.gate.GateResult.
"""

from __future__ import annotations

from typing import Iterable, Optional


class DevloopError(Exception):
    """Base class for all devloop errors."""

    exit_code = 1

    @property
    def reasons(self) -> list[str]:
        """Human-readable reasons, one per line of CLI output."""
        return [str(self)]


class UsageError(DevloopError):
    """Raised when the caller passes an invalid name or option."""
    pass


class InvalidStageError(UsageError):
    """Raised when a stage name is not one of the declared stages."""

    def __init__(self, name: str, valid: Iterable[str]) -> None:
        self.name = name
        self.valid = list(valid)
        super().__init__(
            f"Invalid stage '{name}'. Valid stages: {', '.join(self.valid)}"
        )


class InvalidStatusError(UsageError):
    """Raised when a spec status name is unknown."""

    def __init__(self, name: str, valid: Iterable[str]) -> None:
        self.name = name
        self.valid = list(valid)
        super().__init__(
            f"Invalid status '{name}'. Valid statuses: {', '.join(self.valid)}"
        )


class InvalidFormatError(UsageError):
    """Raised when an output format is not supported."""

    def __init__(self, name: str, valid: Iterable[str]) -> None:
        self.name = name
        self.valid = list(valid)
        super().__init__(
            f"Invalid format '{name}'. Valid formats: {', '.join(self.valid)}"
        )


class ValidationFailed(DevloopError):
    """
    Raised when a transition is blocked by business rules.

    Attributes:
        missing: Every blocking reason, in validator order.
    """

    def __init__(self, message: str, missing: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])

    @property
    def reasons(self) -> list[str]:
        return self.missing or [str(self)]


class InvalidTransitionError(ValidationFailed):
    """Raised when a spec status edge is not in the transition table."""

    def __init__(self, current: str, target: str, allowed: list[str]) -> None:
        self.current = current
        self.target = target
        self.allowed = allowed
        allowed_text = ", ".join(allowed) if allowed else "none"
        message = (
            f"Cannot transition from {current} to {target}. "
            f"Allowed transitions from {current}: {allowed_text}"
        )
        super().__init__(message, [message])


class NotFoundError(DevloopError):
    """Raised when a referenced record does not exist."""
    pass


class IssueNotFoundError(NotFoundError):
    """Raised when an issue cannot be located."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Issue not found: {name}")


class SpecNotFoundError(NotFoundError):
    """Raised when a spec cannot be located within an issue."""

    def __init__(self, issue: str, spec: str) -> None:
        self.issue = issue
        self.spec = spec
        super().__init__(f"Spec not found: {issue}/{spec}")


class PersistenceError(DevloopError):
    """Raised when durable state cannot be read, written or relocated."""
    pass


class VCSError(DevloopError):
    """Raised when a version-control command fails."""

    def __init__(self, message: str, stderr: str = "", returncode: int = -1) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class TrackerError(DevloopError):
    """Raised when the external issue tracker cannot be queried."""
    pass


__all__ = [
    "DevloopError",
    "UsageError",
    "InvalidStageError",
    "InvalidStatusError",
    "InvalidFormatError",
    "ValidationFailed",
    "InvalidTransitionError",
    "NotFoundError",
    "IssueNotFoundError",
    "SpecNotFoundError",
    "PersistenceError",
    "VCSError",
    "TrackerError",
]
