"""Domain models for prize allocation.

This module defines the immutable value types the allocation engine works on:
roster players, the category/prize catalog, manual decisions and the
allocation result. The engine never mutates these - every run builds a fresh
result from fresh inputs.

Every code the engine emits (ineligibility reasons, unfilled reasons, winner
reasons, conflict types) is a closed enum. Free-text reasons are NEVER
produced, so coverage can always be aggregated by cause.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class Gender(str, Enum):
    """Normalized player gender."""
    MALE = "M"
    FEMALE = "F"


_MALE_ALIASES = {"m", "male", "boy", "boys"}
_FEMALE_ALIASES = {"f", "female", "girl", "girls"}


def normalize_gender(raw: str | None) -> Gender | None:
    """Map free-text gender from imports to M/F, or None if unknown."""
    if not raw:
        return None
    value = str(raw).strip().lower()
    if value in _MALE_ALIASES:
        return Gender.MALE
    if value in _FEMALE_ALIASES:
        return Gender.FEMALE
    return None


class CategoryType(str, Enum):
    """How winners of a category are chosen."""
    STANDARD = "standard"                # Best rank among eligible players
    YOUNGEST_FEMALE = "youngest_female"  # Youngest girl by DOB
    YOUNGEST_MALE = "youngest_male"      # Youngest non-female by DOB


class CriteriaField(str, Enum):
    """Criteria groups used to explain why a prize went unfilled."""
    RATING = "RATING"
    AGE = "AGE"
    GENDER = "GENDER"
    LOCATION = "LOCATION"
    TYPE_OR_GROUP = "TYPE_OR_GROUP"


class IneligibilityReason(str, Enum):
    """Why a player failed a category's criteria."""
    GENDER_MISSING = "gender_missing"
    GENDER_MISMATCH = "gender_mismatch"
    NO_DOB = "NO_DOB"
    AGE_ABOVE_MAX = "age_above_max"
    AGE_BELOW_MIN = "age_below_min"
    UNRATED_EXCLUDED = "unrated_excluded"
    RATING_BELOW_MIN = "rating_below_min"
    RATING_ABOVE_MAX = "rating_above_max"
    STATE_EXCLUDED = "state_excluded"
    CITY_EXCLUDED = "city_excluded"
    CLUB_EXCLUDED = "club_excluded"
    DISABILITY_EXCLUDED = "disability_excluded"
    TAG_MISSING = "tag_missing"

    @property
    def field(self) -> CriteriaField:
        return _REASON_FIELDS[self]


_REASON_FIELDS = {
    IneligibilityReason.GENDER_MISSING: CriteriaField.GENDER,
    IneligibilityReason.GENDER_MISMATCH: CriteriaField.GENDER,
    IneligibilityReason.NO_DOB: CriteriaField.AGE,
    IneligibilityReason.AGE_ABOVE_MAX: CriteriaField.AGE,
    IneligibilityReason.AGE_BELOW_MIN: CriteriaField.AGE,
    IneligibilityReason.UNRATED_EXCLUDED: CriteriaField.RATING,
    IneligibilityReason.RATING_BELOW_MIN: CriteriaField.RATING,
    IneligibilityReason.RATING_ABOVE_MAX: CriteriaField.RATING,
    IneligibilityReason.STATE_EXCLUDED: CriteriaField.LOCATION,
    IneligibilityReason.CITY_EXCLUDED: CriteriaField.LOCATION,
    IneligibilityReason.CLUB_EXCLUDED: CriteriaField.LOCATION,
    IneligibilityReason.DISABILITY_EXCLUDED: CriteriaField.TYPE_OR_GROUP,
    IneligibilityReason.TAG_MISSING: CriteriaField.TYPE_OR_GROUP,
}


class PassReason(str, Enum):
    """Criteria a winning player satisfied (recorded on the winner)."""
    GENDER_OK = "gender_ok"
    GENDER_OPEN = "gender_open"
    AGE_OK = "age_ok"
    DOB_INFERRED = "dob_inferred"
    DOB_MISSING_ALLOWED = "dob_missing_allowed"
    RATING_OK = "rating_ok"
    UNRATED_ALLOWED = "rating_unrated_allowed"
    LOCATION_OK = "location_ok"
    DISABILITY_OK = "disability_ok"
    TAGS_OK = "tags_ok"
    YOUNGEST_OK = "youngest_ok"


class WinnerReason(str, Enum):
    """How a winner was chosen."""
    AUTO = "auto"
    RANK = "rank"
    YOUNGEST = "youngest"
    BROCHURE_ORDER = "brochure_order"
    VALUE_TIER = "value_tier"
    MANUAL_OVERRIDE = "manual_override"
    SUGGESTED_RESOLUTION = "suggested_resolution"


class CoverageReason(str, Enum):
    """Reason codes for prizes without a confirmed winner."""
    NO_ELIGIBLE_PLAYERS = "NO_ELIGIBLE_PLAYERS"
    BLOCKED_BY_ONE_PRIZE_POLICY = "BLOCKED_BY_ONE_PRIZE_POLICY"
    TOO_STRICT_CRITERIA_RATING = "TOO_STRICT_CRITERIA_RATING"
    TOO_STRICT_CRITERIA_AGE = "TOO_STRICT_CRITERIA_AGE"
    TOO_STRICT_CRITERIA_GENDER = "TOO_STRICT_CRITERIA_GENDER"
    TOO_STRICT_CRITERIA_LOCATION = "TOO_STRICT_CRITERIA_LOCATION"
    TOO_STRICT_CRITERIA_TYPE_OR_GROUP = "TOO_STRICT_CRITERIA_TYPE_OR_GROUP"
    CATEGORY_INACTIVE = "CATEGORY_INACTIVE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFLICT_PENDING = "CONFLICT_PENDING"

    @property
    def is_critical(self) -> bool:
        """Critical codes block commit; the rest are advisory."""
        return self in (CoverageReason.INTERNAL_ERROR, CoverageReason.CATEGORY_INACTIVE)

    @classmethod
    def too_strict(cls, criteria_field: CriteriaField) -> "CoverageReason":
        return cls(f"TOO_STRICT_CRITERIA_{criteria_field.value}")


class DroppedPinReason(str, Enum):
    """Why a manual decision was not honored."""
    PRIZE_NOT_FOUND = "PRIZE_NOT_FOUND"
    PRIZE_INACTIVE = "PRIZE_INACTIVE"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    PLAYER_NOT_ELIGIBLE = "PLAYER_NOT_ELIGIBLE"


class ConflictType(str, Enum):
    """Kinds of allocation ambiguity that need an organizer decision."""
    TIE = "tie"                              # Identical prizes, same top player
    MULTI_ELIGIBILITY = "multi_eligibility"  # Equal-value prizes, same top player
    POLICY_EXCLUSION = "policy_exclusion"    # Pins exceed the player's prize budget


class DecisionReason(str, Enum):
    """Origin of a manual decision."""
    MANUAL_OVERRIDE = "manual_override"
    SUGGESTED_RESOLUTION = "suggested_resolution"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Player:
    """A roster entry, immutable for the duration of an allocation run."""

    id: str
    rank: int
    name: str = ""
    rating: int | None = None
    dob: date | None = None
    birth_year: int | None = None
    gender: Gender | None = None
    state: str | None = None
    city: str | None = None
    club: str | None = None
    federation: str | None = None
    disability: str | None = None
    tags: frozenset[str] = frozenset()

    @property
    def is_unrated(self) -> bool:
        return self.rating is None or self.rating == 0

    @property
    def effective_dob(self) -> date | None:
        """DOB, or 1 January of the birth year when only the year is known."""
        if self.dob is not None:
            return self.dob
        if self.birth_year:
            return date(self.birth_year, 1, 1)
        return None

    @property
    def dob_is_inferred(self) -> bool:
        return self.dob is None and bool(self.birth_year)


@dataclass(frozen=True)
class CategoryCriteria:
    """Eligibility criteria shared by every prize of a category."""

    gender: Gender | None = None
    min_age: int | None = None
    max_age: int | None = None
    min_rating: int | None = None
    max_rating: int | None = None
    allowed_states: frozenset[str] = frozenset()
    allowed_cities: frozenset[str] = frozenset()
    allowed_clubs: frozenset[str] = frozenset()
    allowed_disabilities: frozenset[str] = frozenset()
    required_tags: frozenset[str] = frozenset()

    @property
    def has_age_bounds(self) -> bool:
        return self.min_age is not None or self.max_age is not None

    @property
    def has_rating_bounds(self) -> bool:
        return self.min_rating is not None or self.max_rating is not None


@dataclass(frozen=True)
class Prize:
    """A single prize slot within a category."""

    id: str
    place: int
    cash_amount: Decimal = Decimal("0")
    has_trophy: bool = False
    has_medal: bool = False
    is_active: bool = True

    @property
    def value_tier(self) -> int:
        """Cash+Trophy > Cash+Medal > Cash > Trophy > Medal > nothing."""
        cash = self.cash_amount > 0
        if cash and self.has_trophy:
            return 4
        if cash and self.has_medal:
            return 3
        if cash:
            return 2
        if self.has_trophy:
            return 1
        if self.has_medal:
            return 0
        return -1

    @property
    def prize_type(self) -> str:
        if self.cash_amount > 0:
            return "cash"
        if self.has_trophy:
            return "trophy"
        if self.has_medal:
            return "medal"
        return "other"


@dataclass(frozen=True)
class Category:
    """A named group of prizes sharing eligibility criteria."""

    id: str
    name: str
    is_main: bool = False
    order_idx: int = 0
    is_active: bool = True
    category_type: CategoryType = CategoryType.STANDARD
    criteria: CategoryCriteria = field(default_factory=CategoryCriteria)
    prizes: tuple[Prize, ...] = ()

    @property
    def is_youngest(self) -> bool:
        return self.category_type in (CategoryType.YOUNGEST_FEMALE, CategoryType.YOUNGEST_MALE)


@dataclass(frozen=True)
class PrizeEntry:
    """A prize paired with its category - the unit the solver iterates over."""

    category: Category
    prize: Prize

    @property
    def prize_id(self) -> str:
        return self.prize.id

    @property
    def label(self) -> str:
        return f"{ordinal(self.prize.place)} {self.category.name}"


def ordinal(n: int) -> str:
    """1 -> '1st', 2 -> '2nd', 11 -> '11th'."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


@dataclass(frozen=True)
class ManualDecision:
    """An organizer pin of one player to one prize."""

    prize_id: str
    player_id: str
    reason: DecisionReason = DecisionReason.MANUAL_OVERRIDE

    def to_dict(self) -> dict[str, Any]:
        return {"prizeId": self.prize_id, "playerId": self.player_id, "reason": self.reason.value}


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ManualPick:
    """A (prize, player) pair suggested for resolving a conflict."""

    prize_id: str
    player_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"prizeId": self.prize_id, "playerId": self.player_id}


@dataclass(frozen=True)
class Winner:
    """One awarded prize."""

    prize_id: str
    player_id: str
    reasons: tuple[str, ...]
    is_manual: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "prizeId": self.prize_id,
            "playerId": self.player_id,
            "reasons": list(self.reasons),
            "isManual": self.is_manual,
        }


@dataclass(frozen=True)
class Conflict:
    """An unresolved allocation ambiguity requiring organizer input."""

    id: str
    type: ConflictType
    impacted_players: tuple[str, ...]
    impacted_prizes: tuple[str, ...]
    reasons: tuple[str, ...]
    suggested: ManualPick | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "impacted_players": list(self.impacted_players),
            "impacted_prizes": list(self.impacted_prizes),
            "reasons": list(self.reasons),
            "suggested": self.suggested.to_dict() if self.suggested else None,
        }


@dataclass(frozen=True)
class UnfilledEntry:
    """A prize with no winner and at least one reason code."""

    prize_id: str
    reason_codes: tuple[CoverageReason, ...]

    def __post_init__(self):
        if not self.reason_codes:
            raise ValueError(f"Unfilled prize {self.prize_id} needs at least one reason code")

    def to_dict(self) -> dict[str, Any]:
        return {"prizeId": self.prize_id, "reasonCodes": [r.value for r in self.reason_codes]}


@dataclass(frozen=True)
class DroppedPin:
    """A manual decision the solver refused to honor."""

    prize_id: str
    player_id: str
    reason_codes: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "prizeId": self.prize_id,
            "playerId": self.player_id,
            "reasonCodes": list(self.reason_codes),
        }


@dataclass(frozen=True)
class CoverageEntry:
    """Per-prize diagnostic explaining why a prize was filled or not."""

    prize_id: str | None
    category_id: str | None
    category_name: str
    place: int | None
    prize_label: str
    prize_type: str
    amount: Decimal | None
    is_main: bool
    eligible_count: int
    candidates_after_policy: int
    picked_count: int
    winner_id: str | None
    reason_code: CoverageReason | None
    raw_fail_codes: tuple[str, ...] = ()
    diagnosis: str | None = None

    @property
    def is_unfilled(self) -> bool:
        return self.picked_count == 0 and self.reason_code is not CoverageReason.CONFLICT_PENDING

    @property
    def is_critical(self) -> bool:
        return self.reason_code is not None and self.reason_code.is_critical

    @property
    def is_blocked_by_one_prize(self) -> bool:
        return self.reason_code is CoverageReason.BLOCKED_BY_ONE_PRIZE_POLICY

    def to_dict(self) -> dict[str, Any]:
        return {
            "prizeId": self.prize_id,
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "place": self.place,
            "prizeLabel": self.prize_label,
            "prizeType": self.prize_type,
            "amount": float(self.amount) if self.amount is not None else None,
            "isMain": self.is_main,
            "eligibleCount": self.eligible_count,
            "candidatesAfterPolicy": self.candidates_after_policy,
            "pickedCount": self.picked_count,
            "winnerId": self.winner_id,
            "reasonCode": self.reason_code.value if self.reason_code else None,
            "rawFailCodes": list(self.raw_fail_codes),
            "diagnosis": self.diagnosis,
            "is_unfilled": self.is_unfilled,
            "is_critical": self.is_critical,
        }


@dataclass(frozen=True)
class CategorySummary:
    """Filled/unfilled totals for one category."""

    category_id: str
    category_name: str
    is_main: bool
    order_idx: int
    total_prizes: int
    filled_prizes: int
    unfilled_prizes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "isMain": self.is_main,
            "orderIdx": self.order_idx,
            "totalPrizes": self.total_prizes,
            "filledPrizes": self.filled_prizes,
            "unfilledPrizes": self.unfilled_prizes,
        }


@dataclass(frozen=True)
class AllocationMeta:
    """Counts describing an allocation run."""

    player_count: int
    active_category_count: int
    active_prize_count: int
    winners_count: int
    conflict_count: int
    unfilled_count: int
    dry_run: bool
    internal_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "playerCount": self.player_count,
            "activeCategoryCount": self.active_category_count,
            "activePrizeCount": self.active_prize_count,
            "winnersCount": self.winners_count,
            "conflictCount": self.conflict_count,
            "unfilledCount": self.unfilled_count,
            "dryRun": self.dry_run,
            "internalError": self.internal_error,
        }


@dataclass(frozen=True)
class AllocationResult:
    """The full, immutable outcome of one allocation run."""

    winners: tuple[Winner, ...]
    conflicts: tuple[Conflict, ...]
    unfilled: tuple[UnfilledEntry, ...]
    coverage: tuple[CoverageEntry, ...]
    meta: AllocationMeta
    dropped_pins: tuple[DroppedPin, ...] = ()
    categories: tuple[CategorySummary, ...] = ()

    @property
    def dry_run(self) -> bool:
        return self.meta.dry_run

    @property
    def has_critical(self) -> bool:
        return any(entry.is_critical for entry in self.coverage)

    def winner_set(self) -> frozenset[tuple[str, str]]:
        return frozenset((w.prize_id, w.player_id) for w in self.winners)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON contract returned to callers."""
        return {
            "winners": [w.to_dict() for w in self.winners],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "unfilled": [u.to_dict() for u in self.unfilled],
            "coverage": [c.to_dict() for c in self.coverage],
            "droppedPins": [d.to_dict() for d in self.dropped_pins],
            "categories": [s.to_dict() for s in self.categories],
            "meta": self.meta.to_dict(),
        }


@dataclass(frozen=True)
class AllocateRequest:
    """One preview or commit request for a tournament."""

    tournament_id: str
    players: tuple[Player, ...]
    categories: tuple[Category, ...]
    rule_config: dict[str, Any] | None = None
    manual_overrides: tuple[ManualDecision, ...] = ()
    dry_run: bool = True
    tournament_start_date: date | None = None


@dataclass(frozen=True)
class CommittedVersion:
    """A published allocation. Immutable history once recorded."""

    tournament_id: str
    version: int
    fingerprint: str
    winners: tuple[Winner, ...]
    committed_at: datetime

    @property
    def allocations_count(self) -> int:
        return len(self.winners)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournamentId": self.tournament_id,
            "version": self.version,
            "allocationsCount": self.allocations_count,
            "committedAt": self.committed_at.isoformat(),
            "winners": [w.to_dict() for w in self.winners],
        }
