"""Conflict tie-breaking.

When one player is the best candidate for several equal-value prizes and
their prize budget cannot cover all of them, the greedy pass cannot pick
without an organizer decision. The TieBreaker describes that situation as a
Conflict and suggests which prize the player should take.

Suggestion discriminators, first difference wins:
1. Main before side (only with prefer_main_on_equal_value)
2. Higher cash amount
3. Lower place number
4. Lower category order_idx (brochure order)
5. Category id, prize id (stable fallback)
"""

import hashlib
from collections.abc import Sequence
from enum import Enum

from app.config.rules import RuleConfig
from app.models.domain import Conflict, ConflictType, ManualPick, PrizeEntry


class ConflictReason(str, Enum):
    """Reason codes attached to conflicts."""
    IDENTICAL_PRIZE_PRIORITY = "identical_prize_priority"
    EQUAL_VALUE_PRIZES = "equal_value_prizes"
    PIN_EXCEEDS_PRIZE_BUDGET = "pin_exceeds_prize_budget"
    # Which discriminator picked the suggestion
    PREFER_MAIN = "suggest_prefer_main"
    HIGHER_CASH = "suggest_higher_cash"
    LOWER_PLACE = "suggest_lower_place"
    BROCHURE_ORDER = "suggest_brochure_order"
    STABLE_ORDER = "suggest_stable_order"


_DISCRIMINATORS = (
    ConflictReason.PREFER_MAIN,
    ConflictReason.HIGHER_CASH,
    ConflictReason.LOWER_PLACE,
    ConflictReason.BROCHURE_ORDER,
    ConflictReason.STABLE_ORDER,
)


def suggestion_key(entry: PrizeEntry, rules: RuleConfig) -> tuple:
    """Sort key: the smallest key is the suggested prize."""
    if rules.prefer_main_on_equal_value:
        main = 0 if entry.category.is_main else 1
    else:
        main = 0
    return (
        main,
        -entry.prize.cash_amount,
        entry.prize.place,
        entry.category.order_idx,
        (entry.category.id, entry.prize.id),
    )


def is_genuine_tie(entries: Sequence[PrizeEntry]) -> bool:
    """True when nothing but brochure position separates the prizes."""
    first = entries[0]
    signature = (
        first.category.is_main,
        first.prize.cash_amount,
        first.prize.value_tier,
        first.prize.place,
    )
    return all(
        (e.category.is_main, e.prize.cash_amount, e.prize.value_tier, e.prize.place) == signature
        for e in entries[1:]
    )


def conflict_id(conflict_type: ConflictType, prize_ids: Sequence[str], player_ids: Sequence[str]) -> str:
    """Deterministic id so identical runs produce identical conflicts."""
    raw = "|".join([conflict_type.value, ",".join(prize_ids), ",".join(player_ids)])
    return "cf_" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]


class TieBreaker:
    """Builds conflicts and suggested resolutions for competing prizes."""

    def __init__(self, rules: RuleConfig):
        self.rules = rules

    def suggest(self, entries: Sequence[PrizeEntry]) -> tuple[PrizeEntry, ConflictReason]:
        """
        Pick the prize the player should take.

        Returns:
            (suggested entry, discriminator that decided it)
        """
        ranked = sorted(entries, key=lambda e: suggestion_key(e, self.rules))
        best, runner_up = ranked[0], ranked[1]
        best_key = suggestion_key(best, self.rules)
        runner_key = suggestion_key(runner_up, self.rules)
        for position, reason in enumerate(_DISCRIMINATORS):
            if best_key[position] != runner_key[position]:
                return best, reason
        return best, ConflictReason.STABLE_ORDER

    def resolve(self, player_id: str, entries: Sequence[PrizeEntry]) -> Conflict:
        """
        Describe a player claimed by several equal-value prizes.

        Args:
            player_id: The shared top candidate
            entries: Competing prizes in priority order (at least two)
        """
        if len(entries) < 2:
            raise ValueError("A conflict needs at least two competing prizes")

        suggested, decided_by = self.suggest(entries)
        if is_genuine_tie(entries):
            conflict_type = ConflictType.TIE
            kind_reason = ConflictReason.IDENTICAL_PRIZE_PRIORITY
        else:
            conflict_type = ConflictType.MULTI_ELIGIBILITY
            kind_reason = ConflictReason.EQUAL_VALUE_PRIZES

        prize_ids = tuple(e.prize_id for e in entries)
        return Conflict(
            id=conflict_id(conflict_type, prize_ids, (player_id,)),
            type=conflict_type,
            impacted_players=(player_id,),
            impacted_prizes=prize_ids,
            reasons=(kind_reason.value, decided_by.value),
            suggested=ManualPick(prize_id=suggested.prize_id, player_id=player_id),
        )

    def policy_exclusion(self, player_id: str, entries: Sequence[PrizeEntry]) -> Conflict:
        """
        Describe manual pins that exceed a player's prize budget.

        No suggestion: the organizer has to pick a different player.
        """
        prize_ids = tuple(e.prize_id for e in entries)
        return Conflict(
            id=conflict_id(ConflictType.POLICY_EXCLUSION, prize_ids, (player_id,)),
            type=ConflictType.POLICY_EXCLUSION,
            impacted_players=(player_id,),
            impacted_prizes=prize_ids,
            reasons=(
                ConflictReason.PIN_EXCEEDS_PRIZE_BUDGET.value,
                self.rules.multi_prize_policy.value,
            ),
            suggested=None,
        )
