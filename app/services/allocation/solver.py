"""Greedy prize allocation solver.

One deterministic pass over every prize in priority order:

1. Manual decisions are applied first. A pin whose player is no longer
   eligible (or whose player/prize disappeared) is DROPPED and reported,
   never silently honored.
2. Each remaining prize takes the best eligible candidate that still has
   prize budget left under multi_prize_policy.
3. If that candidate is also the best candidate for later prizes of equal
   value and cannot take all of them, the prizes are withheld as a Conflict
   and the player is reserved for the suggested prize.
4. Prizes without a candidate become UnfilledEntry records with reason codes.

The pass is greedy on purpose: brochure order is what organizers expect, even
where a global matching could fill more prizes.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date

import structlog

from app.config.rules import MultiPrizePolicy, RuleConfig
from app.models.domain import (
    Category,
    Conflict,
    CoverageReason,
    CriteriaField,
    DroppedPin,
    DroppedPinReason,
    ManualDecision,
    Player,
    PrizeEntry,
    UnfilledEntry,
    Winner,
    WinnerReason,
)
from app.services.allocation.eligibility import (
    AgeBand,
    Eligibility,
    compute_age_bands,
    evaluate,
)
from app.services.allocation.ranking import (
    order_candidates,
    order_prizes,
    value_tier_key,
)
from app.services.allocation.tiebreak import TieBreaker

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AllocationInputs:
    """Everything one solver run depends on."""

    tournament_id: str
    players: tuple[Player, ...]
    categories: tuple[Category, ...]
    rules: RuleConfig
    reference_date: date

    @property
    def active_categories(self) -> tuple[Category, ...]:
        return tuple(c for c in self.categories if c.is_active)

    def prize_entries(self) -> list[PrizeEntry]:
        """Active prizes of every category, inactive categories included."""
        return [
            PrizeEntry(category=c, prize=p)
            for c in self.categories
            for p in c.prizes
            if p.is_active
        ]

    def active_prize_entries(self) -> list[PrizeEntry]:
        return [e for e in self.prize_entries() if e.category.is_active]


@dataclass(frozen=True)
class PrizeTrace:
    """What the solver saw while deciding one prize."""

    entry: PrizeEntry
    eligible_before: int
    eligible_after: int
    winner_id: str | None
    reason_codes: tuple[CoverageReason, ...] = ()
    fail_codes: tuple[str, ...] = ()
    is_manual: bool = False


@dataclass(frozen=True)
class SolverRun:
    """Raw solver output, before coverage enrichment."""

    inputs: AllocationInputs
    winners: tuple[Winner, ...]
    conflicts: tuple[Conflict, ...]
    unfilled: tuple[UnfilledEntry, ...]
    dropped_pins: tuple[DroppedPin, ...]
    traces: tuple[PrizeTrace, ...]
    prize_order: tuple[str, ...]


class PrizeBudget:
    """Tracks how many prizes each player holds under multi_prize_policy."""

    def __init__(self, policy: MultiPrizePolicy):
        self.policy = policy
        self._main: dict[str, int] = {}
        self._side: dict[str, int] = {}

    def held(self, player_id: str) -> int:
        return self._main.get(player_id, 0) + self._side.get(player_id, 0)

    def can_take(self, player_id: str, is_main: bool) -> bool:
        """Whether the player may win one more prize of this kind."""
        policy = self.policy
        if policy is MultiPrizePolicy.UNLIMITED:
            return True
        if policy is MultiPrizePolicy.SINGLE:
            return self.held(player_id) == 0
        if policy is MultiPrizePolicy.MAIN_PLUS_ONE_SIDE:
            counts = self._main if is_main else self._side
            return counts.get(player_id, 0) == 0
        raise ValueError(f"Unhandled multi-prize policy: {policy}")

    def can_take_both(self, player_id: str, first_is_main: bool, second_is_main: bool) -> bool:
        """Whether the player could win two more prizes of these kinds."""
        if not self.can_take(player_id, first_is_main):
            return False
        self.take(player_id, first_is_main)
        try:
            return self.can_take(player_id, second_is_main)
        finally:
            self.release(player_id, first_is_main)

    def take(self, player_id: str, is_main: bool) -> None:
        counts = self._main if is_main else self._side
        counts[player_id] = counts.get(player_id, 0) + 1

    def release(self, player_id: str, is_main: bool) -> None:
        counts = self._main if is_main else self._side
        counts[player_id] -= 1
        if counts[player_id] == 0:
            del counts[player_id]


class AllocationSolver:
    """
    Single-pass allocation over one tournament's inputs.

    A solver instance holds per-run caches; create one per run.
    """

    def __init__(self, inputs: AllocationInputs):
        self.inputs = inputs
        self.rules = inputs.rules
        self.players = inputs.players
        self.roster_size = len(inputs.players)
        self.players_by_id = {p.id: p for p in inputs.players}
        self.age_bands: dict[str, AgeBand] = compute_age_bands(
            inputs.active_categories, inputs.rules
        )
        self.tie_breaker = TieBreaker(inputs.rules)
        self._eligibility: dict[str, dict[str, Eligibility]] = {}

    def eligibility(self, player: Player, category: Category) -> Eligibility:
        """Cached eligibility - criteria are per category, not per prize."""
        by_player = self._eligibility.setdefault(category.id, {})
        result = by_player.get(player.id)
        if result is None:
            result = evaluate(
                player, category, self.rules, self.inputs.reference_date, self.age_bands
            )
            by_player[player.id] = result
            if self.rules.verbose_logs:
                logger.debug(
                    "alloc_check",
                    category=category.id,
                    player=player.id,
                    eligible=result.eligible,
                    codes=[c.value for c in (result.reasons or result.passes)],
                )
        return result

    def eligible_players(self, category: Category) -> list[Player]:
        return [p for p in self.players if self.eligibility(p, category).eligible]

    def top_candidate(
        self, entry: PrizeEntry, budget: PrizeBudget
    ) -> tuple[list[Player], list[Player]]:
        """Eligible pool before and after budget exclusions, best first."""
        before = self.eligible_players(entry.category)
        after = [p for p in before if budget.can_take(p.id, entry.category.is_main)]
        return before, order_candidates(after, entry.category, self.rules, self.roster_size)

    def solve(self, decisions: Iterable[ManualDecision] = ()) -> SolverRun:
        """Run the greedy pass."""
        rules = self.rules
        ordered = order_prizes(self.inputs.prize_entries(), rules)
        entries_by_id = {e.prize_id: e for e in ordered}
        order_pos = {e.prize_id: i for i, e in enumerate(ordered)}

        budget = PrizeBudget(rules.multi_prize_policy)
        winners: list[Winner] = []
        conflicts: list[Conflict] = []
        unfilled: list[UnfilledEntry] = []
        dropped: list[DroppedPin] = []
        traces: dict[str, PrizeTrace] = {}
        settled: set[str] = set()

        # 1) Manual decisions, in prize priority order
        pins = sorted(
            decisions,
            key=lambda d: (order_pos.get(d.prize_id, len(order_pos)), d.prize_id),
        )
        excess_pins: dict[str, list[PrizeEntry]] = {}
        for decision in pins:
            entry = entries_by_id.get(decision.prize_id)
            drop_reasons = self._pin_drop_reasons(decision, entry)
            if drop_reasons:
                dropped.append(DroppedPin(decision.prize_id, decision.player_id, drop_reasons))
                logger.warning(
                    "alloc_pin_dropped",
                    prize=decision.prize_id,
                    player=decision.player_id,
                    reasons=list(drop_reasons),
                )
                continue

            is_main = entry.category.is_main
            if not budget.can_take(decision.player_id, is_main):
                excess_pins.setdefault(decision.player_id, []).append(entry)
                settled.add(entry.prize_id)
                continue

            budget.take(decision.player_id, is_main)
            winners.append(
                Winner(
                    prize_id=entry.prize_id,
                    player_id=decision.player_id,
                    reasons=(decision.reason.value,),
                    is_manual=True,
                )
            )
            settled.add(entry.prize_id)
            eligible_count = len(self.eligible_players(entry.category))
            traces[entry.prize_id] = PrizeTrace(
                entry=entry,
                eligible_before=eligible_count,
                eligible_after=eligible_count,
                winner_id=decision.player_id,
                is_manual=True,
            )
            logger.debug(
                "alloc_win",
                prize=entry.prize_id,
                player=decision.player_id,
                reason=decision.reason.value,
            )

        for player_id, entries in excess_pins.items():
            conflict = self.tie_breaker.policy_exclusion(player_id, entries)
            conflicts.append(conflict)
            for entry in entries:
                traces[entry.prize_id] = self._conflict_trace(entry, budget)
            logger.info(
                "alloc_conflict",
                conflict_type=conflict.type.value,
                player=player_id,
                prizes=list(conflict.impacted_prizes),
            )

        # 2) Greedy pass
        for index, entry in enumerate(ordered):
            if entry.prize_id in settled:
                continue

            if not entry.category.is_active:
                settled.add(entry.prize_id)
                codes = (CoverageReason.CATEGORY_INACTIVE,)
                unfilled.append(UnfilledEntry(entry.prize_id, codes))
                traces[entry.prize_id] = PrizeTrace(entry, 0, 0, None, codes)
                continue

            before, candidates = self.top_candidate(entry, budget)
            if not candidates:
                settled.add(entry.prize_id)
                codes, fail_codes = self._unfilled_reasons(entry, before)
                unfilled.append(UnfilledEntry(entry.prize_id, codes))
                traces[entry.prize_id] = PrizeTrace(
                    entry, len(before), 0, None, codes, fail_codes
                )
                logger.debug(
                    "alloc_unfilled",
                    prize=entry.prize_id,
                    category=entry.category.name,
                    place=entry.prize.place,
                    reasons=[c.value for c in codes],
                )
                continue

            top = candidates[0]
            rivals = self._rival_prizes(entry, top, ordered[index + 1:], settled, budget)
            if rivals:
                competing = [entry, *rivals]
                conflict = self.tie_breaker.resolve(top.id, competing)
                conflicts.append(conflict)
                suggested = entries_by_id[conflict.suggested.prize_id]
                budget.take(top.id, suggested.category.is_main)
                for competing_entry in competing:
                    settled.add(competing_entry.prize_id)
                    traces[competing_entry.prize_id] = self._conflict_trace(competing_entry, budget)
                logger.info(
                    "alloc_conflict",
                    conflict_type=conflict.type.value,
                    player=top.id,
                    prizes=list(conflict.impacted_prizes),
                    suggested=conflict.suggested.prize_id,
                )
                continue

            settled.add(entry.prize_id)
            budget.take(top.id, entry.category.is_main)
            reasons = self._winner_reasons(entry, top)
            winners.append(Winner(entry.prize_id, top.id, reasons, is_manual=False))
            traces[entry.prize_id] = PrizeTrace(
                entry, len(before), len(candidates), top.id
            )
            logger.debug(
                "alloc_win",
                prize=entry.prize_id,
                player=top.id,
                rank=top.rank,
                eligible=len(candidates),
            )

        return SolverRun(
            inputs=self.inputs,
            winners=tuple(winners),
            conflicts=tuple(conflicts),
            unfilled=tuple(unfilled),
            dropped_pins=tuple(dropped),
            traces=tuple(traces[e.prize_id] for e in ordered if e.prize_id in traces),
            prize_order=tuple(e.prize_id for e in ordered),
        )

    def _pin_drop_reasons(
        self, decision: ManualDecision, entry: PrizeEntry | None
    ) -> tuple[str, ...]:
        if entry is None:
            if self._prize_exists(decision.prize_id):
                return (DroppedPinReason.PRIZE_INACTIVE.value,)
            return (DroppedPinReason.PRIZE_NOT_FOUND.value,)
        if not entry.category.is_active:
            return (DroppedPinReason.PRIZE_INACTIVE.value,)
        player = self.players_by_id.get(decision.player_id)
        if player is None:
            return (DroppedPinReason.PLAYER_NOT_FOUND.value,)
        result = self.eligibility(player, entry.category)
        if not result.eligible:
            return (
                DroppedPinReason.PLAYER_NOT_ELIGIBLE.value,
                *(r.value for r in result.reasons),
            )
        return ()

    def _prize_exists(self, prize_id: str) -> bool:
        return any(p.id == prize_id for c in self.inputs.categories for p in c.prizes)

    def _rival_prizes(
        self,
        entry: PrizeEntry,
        top: Player,
        later: Sequence[PrizeEntry],
        settled: set[str],
        budget: PrizeBudget,
    ) -> list[PrizeEntry]:
        """Later equal-value prizes whose best candidate is also `top`."""
        if self.rules.multi_prize_policy is MultiPrizePolicy.UNLIMITED:
            return []
        tier = value_tier_key(entry)
        rivals = []
        for other in later:
            if other.prize_id in settled or not other.category.is_active:
                continue
            if value_tier_key(other) != tier:
                continue
            if budget.can_take_both(top.id, entry.category.is_main, other.category.is_main):
                continue
            _, candidates = self.top_candidate(other, budget)
            if candidates and candidates[0].id == top.id:
                rivals.append(other)
        return rivals

    def _conflict_trace(self, entry: PrizeEntry, budget: PrizeBudget) -> PrizeTrace:
        before, after = self.top_candidate(entry, budget)
        return PrizeTrace(
            entry,
            len(before),
            len(after),
            None,
            (CoverageReason.CONFLICT_PENDING,),
        )

    def _unfilled_reasons(
        self, entry: PrizeEntry, before: list[Player]
    ) -> tuple[tuple[CoverageReason, ...], tuple[str, ...]]:
        """
        Reason codes for a prize with no available candidate.

        Eligible players existed but all hold their prize budget:
        BLOCKED_BY_ONE_PRIZE_POLICY. Otherwise NO_ELIGIBLE_PLAYERS, followed
        by TOO_STRICT_CRITERIA_<field> for every criteria field that alone
        rejected the whole roster.
        """
        results = [self.eligibility(p, entry.category) for p in self.players]
        fail_codes = sorted({r.value for res in results for r in res.reasons})

        if before:
            return (CoverageReason.BLOCKED_BY_ONE_PRIZE_POLICY,), tuple(fail_codes)

        codes = [CoverageReason.NO_ELIGIBLE_PLAYERS]
        if results:
            for criteria_field in CriteriaField:
                if all(any(r.field is criteria_field for r in res.reasons) for res in results):
                    codes.append(CoverageReason.too_strict(criteria_field))
        return tuple(codes), tuple(fail_codes)

    def _winner_reasons(self, entry: PrizeEntry, player: Player) -> tuple[str, ...]:
        selection = WinnerReason.YOUNGEST if entry.category.is_youngest else WinnerReason.RANK
        passes = self.eligibility(player, entry.category).passes
        reasons = [
            WinnerReason.AUTO.value,
            selection.value,
            WinnerReason.BROCHURE_ORDER.value,
            WinnerReason.VALUE_TIER.value,
            *(p.value for p in passes),
        ]
        return tuple(dict.fromkeys(reasons))


def solve(inputs: AllocationInputs, decisions: Iterable[ManualDecision] = ()) -> SolverRun:
    """Convenience wrapper: one solver run over `inputs`."""
    return AllocationSolver(inputs).solve(decisions)
