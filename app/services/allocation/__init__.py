"""Prize allocation module."""

from app.services.allocation.controller import (
    AllocationController,
    AllocationRegistry,
    AllocationState,
    CommitOutcome,
)
from app.services.allocation.engine import AllocationEngine, allocate
from app.services.allocation.errors import (
    AllocationError,
    CommitNotAllowedError,
    ConflictNotFoundError,
    StaleCommitError,
    VersionNotFoundError,
)
from app.services.allocation.overrides import ManualDecisions
from app.services.allocation.solver import AllocationInputs, AllocationSolver

__all__ = [
    "AllocationController",
    "AllocationRegistry",
    "AllocationState",
    "CommitOutcome",
    "AllocationEngine",
    "allocate",
    "AllocationInputs",
    "AllocationSolver",
    "ManualDecisions",
    "AllocationError",
    "CommitNotAllowedError",
    "ConflictNotFoundError",
    "StaleCommitError",
    "VersionNotFoundError",
]
