"""Manual decision bookkeeping.

Organizers steer the solver with pins: (prize, player) pairs that every
subsequent run applies before the greedy pass. Pins come from two places -
an explicit override, or accepting a conflict's suggestion - and are stored
identically apart from their reason tag.

ManualDecisions is keyed by prize id: at most one pin per prize, and the
latest write for a prize always wins.
"""

from collections.abc import Iterable, Iterator, Mapping, Sequence

from app.models.domain import Conflict, DecisionReason, ManualDecision


class ManualDecisions(Mapping[str, ManualDecision]):
    """Immutable prize-id keyed collection of manual decisions."""

    def __init__(self, decisions: Iterable[ManualDecision] = ()):
        by_prize: dict[str, ManualDecision] = {}
        for decision in decisions:
            by_prize[decision.prize_id] = decision
        self._by_prize = by_prize

    def __getitem__(self, prize_id: str) -> ManualDecision:
        return self._by_prize[prize_id]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._by_prize))

    def __len__(self) -> int:
        return len(self._by_prize)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ManualDecisions):
            return self._by_prize == other._by_prize
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._by_prize.values()))

    def __repr__(self) -> str:
        return f"<ManualDecisions {len(self)} pins>"

    def decisions(self) -> tuple[ManualDecision, ...]:
        """All pins, ordered by prize id."""
        return tuple(self._by_prize[k] for k in self)

    def merge(self, overrides: Iterable[ManualDecision]) -> "ManualDecisions":
        """Return a new collection with `overrides` replacing same-prize pins."""
        return merge(self, overrides)

    def without(self, prize_ids: Iterable[str]) -> "ManualDecisions":
        """Return a new collection with the given prizes unpinned."""
        removed = set(prize_ids)
        return ManualDecisions(d for d in self.decisions() if d.prize_id not in removed)

    def to_list(self) -> list[dict]:
        return [d.to_dict() for d in self.decisions()]


def merge(
    existing: Iterable[ManualDecision] | ManualDecisions,
    new_overrides: Iterable[ManualDecision],
) -> ManualDecisions:
    """
    Merge pins: a new pin for a prize replaces any earlier pin for it.

    Args:
        existing: Current decisions (a ManualDecisions or plain pins)
        new_overrides: Pins to apply on top, later entries win

    Returns:
        A new ManualDecisions; neither input is modified
    """
    if isinstance(existing, ManualDecisions):
        base = list(existing.decisions())
    else:
        base = list(existing)
    return ManualDecisions([*base, *new_overrides])


def overrides_from_pairs(
    pairs: Iterable[tuple[str, str]] | Iterable[Mapping[str, str]],
) -> list[ManualDecision]:
    """Build manual_override pins from (prize, player) pairs or request dicts."""
    pins = []
    for pair in pairs:
        if isinstance(pair, Mapping):
            prize_id, player_id = pair["prizeId"], pair["playerId"]
        else:
            prize_id, player_id = pair
        pins.append(ManualDecision(prize_id, player_id, DecisionReason.MANUAL_OVERRIDE))
    return pins


def accept(conflict: Conflict) -> ManualDecision:
    """Pin a conflict's suggested resolution."""
    if conflict.suggested is None:
        raise ValueError(f"Conflict {conflict.id} has no suggested resolution")
    return ManualDecision(
        prize_id=conflict.suggested.prize_id,
        player_id=conflict.suggested.player_id,
        reason=DecisionReason.SUGGESTED_RESOLUTION,
    )


def accept_all(conflicts: Sequence[Conflict], prize_order: Sequence[str]) -> list[ManualDecision]:
    """
    Accept every conflict suggestion that does not collide with another.

    Conflicts are taken in prize priority order (by their highest-priority
    impacted prize). A suggestion is skipped when the conflict has none, or
    its prize or player was already claimed by an earlier accepted
    suggestion in this batch.
    """
    position = {prize_id: i for i, prize_id in enumerate(prize_order)}
    fallback = len(position)

    def priority(conflict: Conflict) -> tuple[int, str]:
        first = min((position.get(p, fallback) for p in conflict.impacted_prizes), default=fallback)
        return (first, conflict.id)

    claimed_prizes: set[str] = set()
    claimed_players: set[str] = set()
    accepted: list[ManualDecision] = []
    for conflict in sorted(conflicts, key=priority):
        if conflict.suggested is None:
            continue
        pick = conflict.suggested
        if pick.prize_id in claimed_prizes or pick.player_id in claimed_players:
            continue
        accepted.append(accept(conflict))
        claimed_prizes.add(pick.prize_id)
        claimed_players.add(pick.player_id)
    return accepted
