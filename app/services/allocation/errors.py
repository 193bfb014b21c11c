"""Errors raised by the allocation controller.

Solver-level problems are never exceptions (they are reason codes on the
result). These errors only cover caller mistakes against the preview/commit
workflow. Each carries a stable `code` the API returns to clients.
"""


class AllocationError(Exception):
    """Base class for allocation workflow errors."""

    code = "ALLOCATION_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.details}


class CommitNotAllowedError(AllocationError):
    """Commit requested outside the ready_to_commit state."""

    code = "COMMIT_NOT_ALLOWED"


class StaleCommitError(AllocationError):
    """Commit inputs or output disagree with the last preview."""

    code = "STALE_COMMIT"


class ConflictNotFoundError(AllocationError):
    """No conflict with that id in the last preview."""

    code = "CONFLICT_NOT_FOUND"


class VersionNotFoundError(AllocationError):
    """No committed version with that number."""

    code = "VERSION_NOT_FOUND"
