from __future__ import annotations

from typing import List, Optional, Sequence


class GovernanceError(Exception):
    """Base class for errors raised by the governance core."""


class ValidationError(GovernanceError, ValueError):
    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.details = details or {}


class CycleError(ValidationError):
    """Raised when a dependency graph that must be acyclic contains a cycle."""

    def __init__(
        self,
        message: str,
        cycles: Sequence[Sequence[str]] = (),
        items: Sequence[str] = (),
    ) -> None:
        super().__init__(message, {"cycles": [list(c) for c in cycles], "items": list(items)})
        self.cycles: List[List[str]] = [list(cycle) for cycle in cycles]
        self.items: List[str] = list(items)


class NotFoundError(GovernanceError, KeyError):
    def __init__(self, resource: str, identifier: Optional[str] = None) -> None:
        message = f"{resource} '{identifier}' not found" if identifier else f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier
        self.message = message

    def __str__(self) -> str:
        return self.message


class WorkflowError(GovernanceError):
    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        attempted_state: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.current_state = current_state
        self.attempted_state = attempted_state
