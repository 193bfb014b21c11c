"""Player eligibility evaluation.

Decides whether a player satisfies a category's criteria under the active
rule configuration. `evaluate` is a total, side-effect free function: missing
or ambiguous player data NEVER raises - it resolves to an explicit reason
code so coverage can aggregate unfilled prizes by cause.

Checks, in order:
- Youngest categories: DOB required, gender filter
- Gender: exact match, missing gender never matches
- Age: band membership at the reference date
- Rating: bounds, unrated players only with allow_unrated_in_rating
- Location / disability / custom tags: allow-list membership
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from app.config.rules import AgeBandPolicy, RuleConfig
from app.models.domain import (
    Category,
    CategoryType,
    Gender,
    IneligibilityReason,
    PassReason,
    Player,
)


@dataclass(frozen=True)
class AgeBand:
    """Effective age range of a category after band policy is applied."""

    category_id: str
    min_age: int | None
    max_age: int | None


@dataclass(frozen=True)
class Eligibility:
    """Outcome of an eligibility check."""

    reasons: tuple[IneligibilityReason, ...] = ()
    passes: tuple[PassReason, ...] = ()

    @property
    def eligible(self) -> bool:
        return not self.reasons

    @property
    def reason(self) -> IneligibilityReason | None:
        """Primary reason a player is ineligible."""
        return self.reasons[0] if self.reasons else None


def age_on(dob: date | None, on_date: date) -> int | None:
    """Whole years between `dob` and `on_date`."""
    if dob is None:
        return None
    years = on_date.year - dob.year
    if (on_date.month, on_date.day) < (dob.month, dob.day):
        years -= 1
    return years


def compute_age_bands(categories: Iterable[Category], rules: RuleConfig) -> dict[str, AgeBand]:
    """
    Derive effective age bands for every age-bounded category.

    With non-overlapping bands, categories are grouped by max_age (a U8 Boys
    and a U8 Girls category share one band) and each group starts right after
    the previous group's upper bound, so a U10 player never also qualifies
    for U12. A category's own min_age raises only that category's lower
    bound, never above the group's max_age.

    With overlapping bands, explicit bounds are used as given.
    """
    bounded = [c for c in categories if c.criteria.has_age_bounds]
    policy = rules.age_band_policy

    if policy is AgeBandPolicy.OVERLAPPING:
        return {
            c.id: AgeBand(c.id, c.criteria.min_age, c.criteria.max_age)
            for c in bounded
        }
    if policy is not AgeBandPolicy.NON_OVERLAPPING:
        raise ValueError(f"Unhandled age band policy: {policy}")

    bands: dict[str, AgeBand] = {}
    groups: dict[int, list[Category]] = {}
    for category in bounded:
        if category.criteria.max_age is None:
            # Open-ended "senior" style categories keep their explicit floor
            bands[category.id] = AgeBand(category.id, category.criteria.min_age, None)
            continue
        groups.setdefault(category.criteria.max_age, []).append(category)

    previous_max: int | None = None
    for group_max in sorted(groups):
        if previous_max is None:
            derived_min = 0
        elif rules.max_age_inclusive:
            derived_min = previous_max + 1
        else:
            derived_min = previous_max

        for category in groups[group_max]:
            own_min = category.criteria.min_age
            lower = max(derived_min, own_min) if own_min is not None else derived_min
            bands[category.id] = AgeBand(category.id, min(lower, group_max), group_max)
        previous_max = group_max

    return bands


def _in_list(value: str | None, allowed: frozenset[str]) -> bool:
    if value is None or not str(value).strip():
        return False
    needle = str(value).strip().lower()
    return any(needle == str(item).strip().lower() for item in allowed)


def evaluate(
    player: Player,
    category: Category,
    rules: RuleConfig,
    reference_date: date,
    age_bands: dict[str, AgeBand] | None = None,
) -> Eligibility:
    """
    Check one player against one category.

    Args:
        player: Roster entry
        category: Category whose criteria apply
        rules: Active rule configuration
        reference_date: Date at which ages are measured
        age_bands: Effective bands from compute_age_bands (optional)

    Returns:
        Eligibility with reason codes (empty = eligible) and pass codes
    """
    criteria = category.criteria
    reasons: list[IneligibilityReason] = []
    passes: list[PassReason] = []
    dob = player.effective_dob

    if player.dob_is_inferred:
        passes.append(PassReason.DOB_INFERRED)

    # Youngest categories rank by DOB, so an unknown DOB can never win
    if category.is_youngest:
        if dob is None:
            reasons.append(IneligibilityReason.NO_DOB)
        if category.category_type is CategoryType.YOUNGEST_FEMALE:
            if player.gender is None:
                reasons.append(IneligibilityReason.GENDER_MISSING)
            elif player.gender is not Gender.FEMALE:
                reasons.append(IneligibilityReason.GENDER_MISMATCH)
        elif category.category_type is CategoryType.YOUNGEST_MALE:
            if player.gender is None:
                reasons.append(IneligibilityReason.GENDER_MISSING)
            elif player.gender is Gender.FEMALE:
                reasons.append(IneligibilityReason.GENDER_MISMATCH)
        if not reasons:
            passes.append(PassReason.YOUNGEST_OK)

    # Gender
    if criteria.gender is None:
        passes.append(PassReason.GENDER_OPEN)
    elif player.gender is None:
        reasons.append(IneligibilityReason.GENDER_MISSING)
    elif player.gender is not criteria.gender:
        reasons.append(IneligibilityReason.GENDER_MISMATCH)
    else:
        passes.append(PassReason.GENDER_OK)

    # Age
    band = (age_bands or {}).get(category.id)
    if band is None and criteria.has_age_bounds:
        band = AgeBand(category.id, criteria.min_age, criteria.max_age)
    if band is not None:
        age = age_on(dob, reference_date)
        if age is None:
            if rules.strict_age and not rules.allow_missing_dob_for_age:
                reasons.append(IneligibilityReason.NO_DOB)
            else:
                passes.append(PassReason.DOB_MISSING_ALLOWED)
        else:
            age_ok = True
            if band.max_age is not None:
                within_max = age <= band.max_age if rules.max_age_inclusive else age < band.max_age
                if not within_max:
                    reasons.append(IneligibilityReason.AGE_ABOVE_MAX)
                    age_ok = False
            if band.min_age is not None and age < band.min_age:
                reasons.append(IneligibilityReason.AGE_BELOW_MIN)
                age_ok = False
            if age_ok:
                passes.append(PassReason.AGE_OK)

    # Rating
    if criteria.has_rating_bounds:
        if player.is_unrated:
            if rules.allow_unrated_in_rating:
                passes.append(PassReason.UNRATED_ALLOWED)
            else:
                reasons.append(IneligibilityReason.UNRATED_EXCLUDED)
        else:
            rating_ok = True
            if criteria.min_rating is not None and player.rating < criteria.min_rating:
                reasons.append(IneligibilityReason.RATING_BELOW_MIN)
                rating_ok = False
            if criteria.max_rating is not None and player.rating > criteria.max_rating:
                reasons.append(IneligibilityReason.RATING_ABOVE_MAX)
                rating_ok = False
            if rating_ok:
                passes.append(PassReason.RATING_OK)

    # Location
    location_checked = False
    location_ok = True
    for allowed, value, reason in (
        (criteria.allowed_states, player.state, IneligibilityReason.STATE_EXCLUDED),
        (criteria.allowed_cities, player.city, IneligibilityReason.CITY_EXCLUDED),
        (criteria.allowed_clubs, player.club, IneligibilityReason.CLUB_EXCLUDED),
    ):
        if not allowed:
            continue
        location_checked = True
        if not _in_list(value, allowed):
            reasons.append(reason)
            location_ok = False
    if location_checked and location_ok:
        passes.append(PassReason.LOCATION_OK)

    # Disability
    if criteria.allowed_disabilities:
        if _in_list(player.disability, criteria.allowed_disabilities):
            passes.append(PassReason.DISABILITY_OK)
        else:
            reasons.append(IneligibilityReason.DISABILITY_EXCLUDED)

    # Custom tags
    if criteria.required_tags:
        player_tags = {t.strip().lower() for t in player.tags}
        if all(t.strip().lower() in player_tags for t in criteria.required_tags):
            passes.append(PassReason.TAGS_OK)
        else:
            reasons.append(IneligibilityReason.TAG_MISSING)

    return Eligibility(reasons=tuple(dict.fromkeys(reasons)), passes=tuple(passes))
