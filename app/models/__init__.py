"""Domain models for prize allocation."""

from app.models.domain import (
    AllocateRequest,
    AllocationMeta,
    AllocationResult,
    Category,
    CategoryCriteria,
    CategorySummary,
    CategoryType,
    CommittedVersion,
    Conflict,
    ConflictType,
    CoverageEntry,
    CoverageReason,
    DecisionReason,
    DroppedPin,
    Gender,
    IneligibilityReason,
    ManualDecision,
    ManualPick,
    Player,
    Prize,
    PrizeEntry,
    UnfilledEntry,
    Winner,
)

__all__ = [
    # Inputs
    "Player",
    "Category",
    "CategoryCriteria",
    "CategoryType",
    "Prize",
    "PrizeEntry",
    "Gender",
    "ManualDecision",
    "DecisionReason",
    "AllocateRequest",
    # Outputs
    "Winner",
    "Conflict",
    "ConflictType",
    "ManualPick",
    "UnfilledEntry",
    "DroppedPin",
    "CoverageEntry",
    "CoverageReason",
    "CategorySummary",
    "AllocationMeta",
    "AllocationResult",
    "CommittedVersion",
    "IneligibilityReason",
]
