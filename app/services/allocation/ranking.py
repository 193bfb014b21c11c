"""Prize and candidate ordering.

Prize order decides which prize claims its best candidate first; candidate
order decides who that best candidate is. Both orders are TOTAL: the final
key is always an id, so two distinct prizes (or players) never compare equal
and repeated runs over identical inputs produce identical results.
"""

from collections.abc import Iterable, Sequence
from decimal import Decimal

from app.config.rules import PriorityMode, RuleConfig, TieBreakField
from app.models.domain import Category, Player, PrizeEntry

# Sorts after every real DOB ordinal when negated
_NO_DOB = 0


def _main_key(entry: PrizeEntry) -> int:
    return 0 if entry.category.is_main else 1


def _value_key(entry: PrizeEntry) -> tuple[int, Decimal]:
    return (-entry.prize.value_tier, -entry.prize.cash_amount)


def prize_sort_key(entry: PrizeEntry, rules: RuleConfig) -> tuple:
    """
    Sort key for one prize under the configured priority mode.

    main_first:  main/side, brochure order, place, value
    place_first: place, main/side, brochure order
    value_first: value, main/side, brochure order, place
    """
    mode = rules.main_vs_side_priority_mode
    order_idx = entry.category.order_idx
    place = entry.prize.place

    if mode is PriorityMode.MAIN_FIRST:
        key = (_main_key(entry), order_idx, place, *_value_key(entry))
    elif mode is PriorityMode.PLACE_FIRST:
        key = (place, _main_key(entry), order_idx, *_value_key(entry))
    elif mode is PriorityMode.VALUE_FIRST:
        key = (*_value_key(entry), _main_key(entry), order_idx, place)
    else:
        raise ValueError(f"Unhandled priority mode: {mode}")

    return (*key, entry.category.id, entry.prize.id)


def order_prizes(entries: Iterable[PrizeEntry], rules: RuleConfig) -> list[PrizeEntry]:
    """Order prizes by allocation priority."""
    return sorted(entries, key=lambda e: prize_sort_key(e, rules))


def value_tier_key(entry: PrizeEntry) -> tuple[int, Decimal]:
    """Prizes with equal keys are worth the same to a player."""
    return (entry.prize.value_tier, entry.prize.cash_amount)


def rank_points(rank: int, roster_size: int) -> int:
    """
    Points for an official rank: rank 1 scores roster_size, the last rank
    scores 1. Ranks beyond the roster size score 0.
    """
    return max(roster_size - rank + 1, 0)


def _tie_break_keys(player: Player, tie_break_fields: Sequence[TieBreakField]) -> tuple:
    keys: list = []
    for tie_field in tie_break_fields:
        if tie_field is TieBreakField.RATING:
            keys.append(-(player.rating or 0))
        elif tie_field is TieBreakField.NAME:
            keys.append((player.name or "").casefold())
        elif tie_field is TieBreakField.YOUNGER:
            dob = player.effective_dob
            keys.append(-dob.toordinal() if dob else _NO_DOB)
        else:
            raise ValueError(f"Unhandled tie-break field: {tie_field}")
    return tuple(keys)


def candidate_sort_key(
    player: Player,
    category: Category,
    rules: RuleConfig,
    roster_size: int,
) -> tuple:
    """
    Sort key for one candidate within a prize.

    Standard categories: rank points DESC, rank ASC, tie-break fields, id.
    Youngest categories: DOB DESC (youngest first), rating DESC, name, id.
    """
    if category.is_youngest:
        dob = player.effective_dob
        return (
            -dob.toordinal() if dob else _NO_DOB,
            -(player.rating or 0),
            (player.name or "").casefold(),
            player.id,
        )
    return (
        -rank_points(player.rank, roster_size),
        player.rank,
        *_tie_break_keys(player, rules.tie_break_fields),
        player.id,
    )


def order_candidates(
    players: Iterable[Player],
    category: Category,
    rules: RuleConfig,
    roster_size: int,
) -> list[Player]:
    """Order eligible players for a prize of `category`, best first."""
    return sorted(
        players,
        key=lambda p: candidate_sort_key(p, category, rules, roster_size),
    )
