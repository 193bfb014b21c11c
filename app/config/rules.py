"""Allocation rule configuration.

Defines every organizer-facing toggle of the allocation engine as one
explicit, versioned configuration type. Mode fields are closed enums so each
code path can match them exhaustively.

Organizers send rule config as an open bag of toggles. `RuleConfig.from_mapping`
is the only place that bag is interpreted: unknown keys are ignored and
malformed values fall back to the value they would have replaced. A bad config NEVER
fails an allocation run.
"""

from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Mapping

import structlog

logger = structlog.get_logger(__name__)

RULE_CONFIG_VERSION = 1


class AgeBandPolicy(str, Enum):
    """How age categories relate to each other."""
    NON_OVERLAPPING = "non_overlapping"  # Each player falls in exactly one band
    OVERLAPPING = "overlapping"          # U10 players also qualify for U12, U14...


class AgeCutoffPolicy(str, Enum):
    """Date at which a player's age is measured."""
    JAN1_TOURNAMENT_YEAR = "JAN1_TOURNAMENT_YEAR"
    TOURNAMENT_START_DATE = "TOURNAMENT_START_DATE"
    CUSTOM_DATE = "CUSTOM_DATE"


class PriorityMode(str, Enum):
    """Primary ordering of prizes during allocation."""
    MAIN_FIRST = "main_first"    # All main prizes before any side prize
    PLACE_FIRST = "place_first"  # All 1st places, then all 2nd places...
    VALUE_FIRST = "value_first"  # Highest value prizes first


class MultiPrizePolicy(str, Enum):
    """How many prizes one player may win in a single pass."""
    SINGLE = "single"
    MAIN_PLUS_ONE_SIDE = "main_plus_one_side"
    UNLIMITED = "unlimited"


class TieBreakField(str, Enum):
    """Candidate tie-break keys applied after rank."""
    RATING = "rating"    # Higher rating first
    NAME = "name"        # Alphabetical
    YOUNGER = "younger"  # Later DOB first


@dataclass(frozen=True)
class RuleConfig:
    """Complete allocation rule configuration for one tournament."""

    version: int = RULE_CONFIG_VERSION

    # Age
    strict_age: bool = True
    allow_missing_dob_for_age: bool = False
    max_age_inclusive: bool = True
    age_band_policy: AgeBandPolicy = AgeBandPolicy.NON_OVERLAPPING
    age_cutoff_policy: AgeCutoffPolicy = AgeCutoffPolicy.JAN1_TOURNAMENT_YEAR
    age_cutoff_date: date | None = None

    # Rating
    allow_unrated_in_rating: bool = False

    # Priority
    prefer_main_on_equal_value: bool = True
    main_vs_side_priority_mode: PriorityMode = PriorityMode.MAIN_FIRST
    multi_prize_policy: MultiPrizePolicy = MultiPrizePolicy.SINGLE
    tie_break_fields: tuple[TieBreakField, ...] = (TieBreakField.RATING, TieBreakField.NAME)

    # Diagnostics
    verbose_logs: bool = False

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any] | None, base: "RuleConfig | None" = None
    ) -> "RuleConfig":
        """
        Build a config from an organizer-supplied mapping.

        Missing keys keep the value from `base` (the built-in defaults when
        no base is given). Values that cannot be coerced are logged and
        replaced by the base value for that field.
        """
        defaults = base if base is not None else cls()
        if not data:
            return defaults

        known = {f.name for f in fields(cls)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            logger.debug("rule_config_unknown_keys", keys=unknown)

        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            default = getattr(defaults, f.name)
            try:
                values[f.name] = _coerce(f.name, data[f.name], default)
            except (TypeError, ValueError):
                logger.warning(
                    "rule_config_invalid_value",
                    key=f.name,
                    value=data[f.name],
                    fallback=_plain(default),
                )
        return replace(defaults, **values)

    def merged(self, overrides: Mapping[str, Any] | None) -> "RuleConfig":
        """Return a new config with `overrides` applied on top of this one."""
        if not overrides:
            return self
        return RuleConfig.from_mapping(overrides, base=self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary (JSON friendly)."""
        return {key: _plain(value) for key, value in asdict(self).items()}


_ENUM_FIELDS: dict[str, type[Enum]] = {
    "age_band_policy": AgeBandPolicy,
    "age_cutoff_policy": AgeCutoffPolicy,
    "main_vs_side_priority_mode": PriorityMode,
    "multi_prize_policy": MultiPrizePolicy,
}

_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off", ""}


def _coerce(name: str, value: Any, default: Any) -> Any:
    if name in _ENUM_FIELDS:
        enum_cls = _ENUM_FIELDS[name]
        if isinstance(value, enum_cls):
            return value
        return enum_cls(str(value).strip())
    if name == "tie_break_fields":
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        return tuple(TieBreakField(str(item).strip().lower()) for item in value)
    if name == "age_cutoff_date":
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value))
    if isinstance(default, bool):
        return _coerce_bool(value)
    if isinstance(default, int):
        return int(value)
    return value


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def resolve_reference_date(rules: RuleConfig, tournament_start: date) -> date:
    """Date at which player ages are measured for this tournament."""
    policy = rules.age_cutoff_policy
    if policy is AgeCutoffPolicy.JAN1_TOURNAMENT_YEAR:
        return date(tournament_start.year, 1, 1)
    if policy is AgeCutoffPolicy.TOURNAMENT_START_DATE:
        return tournament_start
    if policy is AgeCutoffPolicy.CUSTOM_DATE:
        if rules.age_cutoff_date is None:
            logger.warning("age_cutoff_date_missing", fallback=tournament_start.isoformat())
            return tournament_start
        return rules.age_cutoff_date
    raise ValueError(f"Unhandled age cutoff policy: {policy}")
