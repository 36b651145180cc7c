"""Workflow errors. Each carries a stable `kind` so callers can render an actionable message."""

from __future__ import annotations

from typing import Any


class CaseWorkflowError(Exception):
    kind = "WorkflowError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class CaseNotFoundError(CaseWorkflowError):
    kind = "NotFound"

    def __init__(self, case_id: int) -> None:
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


class IllegalTransitionError(CaseWorkflowError):
    """Target is not reachable from the current status. Lists what is reachable for the actor."""

    kind = "IllegalTransition"

    def __init__(self, current_status: str, target_status: str, allowed_statuses: list[str]) -> None:
        super().__init__(
            f"Cannot transition from {current_status} to {target_status}. "
            f"Allowed from {current_status}: {', '.join(allowed_statuses) or 'none'}"
        )
        self.current_status = current_status
        self.target_status = target_status
        self.allowed_statuses = allowed_statuses

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["current_status"] = self.current_status
        out["allowed_statuses"] = list(self.allowed_statuses)
        return out


class ForbiddenError(CaseWorkflowError):
    kind = "Forbidden"


class ConflictError(CaseWorkflowError):
    """Concurrent modification; safe to retry after re-reading the case."""

    kind = "Conflict"


class WorkflowValidationError(CaseWorkflowError):
    kind = "ValidationError"

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.errors:
            out["errors"] = dict(self.errors)
        return out
