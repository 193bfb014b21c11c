"""Unit tests for the allocation solver and engine.

CRITICAL TESTS:
- A player never wins more prizes than multi_prize_policy allows
- Every active prize is won, unfilled or conflicted - exactly once
- Identical inputs produce identical results
- Pins are honored or dropped and reported, never silently ignored
"""

from collections import Counter
from datetime import date

import pytest

from app.config.rules import AgeBandPolicy, MultiPrizePolicy, RuleConfig
from app.models.domain import (
    Category,
    CategoryCriteria,
    CategoryType,
    ConflictType,
    CoverageReason,
    DecisionReason,
    DroppedPinReason,
    Gender,
    ManualDecision,
    Player,
    WinnerReason,
)
from app.services.allocation.eligibility import compute_age_bands, evaluate
from app.services.allocation.engine import AllocationEngine, allocate
from app.services.allocation.solver import PrizeBudget, solve


def winners_by_prize(result):
    return {w.prize_id: w.player_id for w in result.winners}


def accounted_prizes(result):
    """Every prize id the result mentions, with multiplicity."""
    ids = [w.prize_id for w in result.winners]
    ids += [u.prize_id for u in result.unfilled]
    ids += [p for c in result.conflicts for p in c.impacted_prizes]
    return ids


@pytest.fixture
def equal_value(make_prize):
    """
    Main and side prize of identical cash value, two players.

    Prize A: Open (main) 1st, 10000
    Prize B: Rating category (side) 1st, 10000
    """
    main = Category(id="main", name="Open", is_main=True, order_idx=0,
                    prizes=(make_prize("A", 1, "10000"),))
    side = Category(id="side", name="Rating", order_idx=1,
                    prizes=(make_prize("B", 1, "10000"),))
    players = [
        Player(id="x", rank=1, name="Xavier", rating=1800, dob=date(2000, 1, 1), gender=Gender.MALE),
        Player(id="y", rank=2, name="Yusuf", rating=1800, dob=date(2000, 1, 1), gender=Gender.MALE),
    ]
    return players, [main, side]


class TestPrizeBudget:
    """Test multi-prize policy budgets."""

    def test_single(self):
        """One prize per player in total."""
        budget = PrizeBudget(MultiPrizePolicy.SINGLE)
        assert budget.can_take("x", True)
        budget.take("x", True)
        assert not budget.can_take("x", False)

    def test_main_plus_one_side(self):
        """One main prize plus one side prize per player."""
        budget = PrizeBudget(MultiPrizePolicy.MAIN_PLUS_ONE_SIDE)
        budget.take("x", True)
        assert not budget.can_take("x", True)
        assert budget.can_take("x", False)
        budget.take("x", False)
        assert not budget.can_take("x", False)

    def test_unlimited(self):
        """No cap on prizes per player."""
        budget = PrizeBudget(MultiPrizePolicy.UNLIMITED)
        for _ in range(5):
            budget.take("x", True)
        assert budget.can_take("x", True)

    def test_can_take_both_leaves_budget_untouched(self):
        """Checking a pair of prizes takes nothing."""
        budget = PrizeBudget(MultiPrizePolicy.MAIN_PLUS_ONE_SIDE)
        assert budget.can_take_both("x", True, False)
        assert not budget.can_take_both("x", False, False)
        assert budget.held("x") == 0

    def test_release(self):
        """A released prize frees the budget again."""
        budget = PrizeBudget(MultiPrizePolicy.SINGLE)
        budget.take("x", False)
        budget.release("x", False)
        assert budget.can_take("x", True)


class TestGreedyAllocation:
    """Test the greedy pass over the sample catalog."""

    def test_default_rules(self, roster, catalog, make_inputs):
        """Sample catalog under the single-prize policy."""
        result = allocate(make_inputs(roster.values(), catalog.values()))

        assert winners_by_prize(result) == {
            "open-1": "p1",
            "open-2": "p2",
            "open-3": "p3",
            "b1400-1": "p4",
            "ka-1": "p5",
        }
        unfilled = {u.prize_id: u.reason_codes for u in result.unfilled}
        assert unfilled == {
            "u12-1": (CoverageReason.BLOCKED_BY_ONE_PRIZE_POLICY,),
            "female-1": (CoverageReason.BLOCKED_BY_ONE_PRIZE_POLICY,),
        }
        assert result.conflicts == ()

    def test_uniqueness_under_single_policy(self, roster, catalog, make_inputs):
        """Nobody wins twice under the single-prize policy."""
        result = allocate(make_inputs(roster.values(), catalog.values()))
        counts = Counter(w.player_id for w in result.winners)
        assert max(counts.values()) == 1

    def test_completeness(self, roster, catalog, make_inputs):
        """Every active prize appears exactly once across winners/unfilled/conflicts."""
        result = allocate(make_inputs(roster.values(), catalog.values()))
        all_prizes = sorted(p.id for c in catalog.values() for p in c.prizes)
        assert sorted(accounted_prizes(result)) == all_prizes

    def test_main_plus_one_side(self, roster, catalog, make_inputs):
        """Players may add one side prize to a main prize."""
        rules = RuleConfig(multi_prize_policy=MultiPrizePolicy.MAIN_PLUS_ONE_SIDE)
        result = allocate(make_inputs(roster.values(), catalog.values(), rules))

        assert winners_by_prize(result) == {
            "open-1": "p1",
            "open-2": "p2",
            "open-3": "p3",
            "b1400-1": "p3",
            "u12-1": "p4",
            "female-1": "p2",
            "ka-1": "p1",
        }
        main_ids = {p.id for p in catalog["open"].prizes}
        mains = Counter(w.player_id for w in result.winners if w.prize_id in main_ids)
        sides = Counter(w.player_id for w in result.winners if w.prize_id not in main_ids)
        assert max(mains.values()) == 1
        assert max(sides.values()) == 1

    def test_unlimited(self, roster, catalog, make_inputs):
        """The best player sweeps every prize they qualify for."""
        rules = RuleConfig(multi_prize_policy=MultiPrizePolicy.UNLIMITED)
        result = allocate(make_inputs(roster.values(), catalog.values(), rules))
        winners = winners_by_prize(result)
        assert winners["open-1"] == winners["open-2"] == winners["open-3"] == "p1"
        assert result.unfilled == ()

    def test_idempotent(self, roster, catalog, make_inputs):
        """Same inputs, same result."""
        inputs = make_inputs(roster.values(), catalog.values())
        assert allocate(inputs) == allocate(inputs)

    def test_winner_reasons(self, roster, catalog, make_inputs):
        """Automatic winners carry their selection reasons."""
        result = allocate(make_inputs(roster.values(), catalog.values()))
        first = next(w for w in result.winners if w.prize_id == "open-1")
        assert first.reasons[:4] == (
            WinnerReason.AUTO.value,
            WinnerReason.RANK.value,
            WinnerReason.BROCHURE_ORDER.value,
            WinnerReason.VALUE_TIER.value,
        )
        assert not first.is_manual

    def test_youngest_category(self, roster, make_prize, make_inputs):
        """Youngest Girl goes to the youngest eligible girl."""
        youngest = Category(
            id="yg", name="Youngest Girl", category_type=CategoryType.YOUNGEST_FEMALE,
            prizes=(make_prize("yg-1", 1, trophy=True),),
        )
        result = allocate(make_inputs(roster.values(), [youngest]))
        winner = result.winners[0]
        assert winner.player_id == "p3"
        assert WinnerReason.YOUNGEST.value in winner.reasons

    def test_inactive_prize_is_ignored(self, roster, make_prize, make_inputs):
        """Inactive prizes never show up in the result."""
        cat = Category(id="c", name="C", prizes=(
            make_prize("live", 1, "100"),
            make_prize("retired", 2, "50", active=False),
        ))
        result = allocate(make_inputs(roster.values(), [cat]))
        assert accounted_prizes(result) == ["live"]
        assert [c.prize_id for c in result.coverage] == ["live"]


class TestEligibilitySoundness:
    """Every automatic winner is eligible for the prize they won."""

    @pytest.mark.parametrize("policy", list(MultiPrizePolicy))
    @pytest.mark.parametrize("bands", list(AgeBandPolicy))
    def test_winners_are_eligible(self, roster, catalog, make_inputs, policy, bands):
        """Holds for every prize budget and age band mode."""
        rules = RuleConfig(multi_prize_policy=policy, age_band_policy=bands)
        inputs = make_inputs(roster.values(), catalog.values(), rules)
        result = allocate(inputs)

        players = {p.id: p for p in inputs.players}
        category_of = {p.id: c for c in inputs.categories for p in c.prizes}
        age_bands = compute_age_bands(inputs.active_categories, rules)

        assert result.winners
        for winner in result.winners:
            if winner.is_manual:
                continue
            eligibility = evaluate(
                players[winner.player_id],
                category_of[winner.prize_id],
                rules,
                inputs.reference_date,
                age_bands,
            )
            assert eligibility.eligible, (winner.prize_id, winner.player_id, eligibility.reasons)


class TestUnfilledReasons:
    """Test reason codes for prizes without a winner."""

    def test_rating_band_with_no_players_in_range(self, make_prize, make_inputs):
        """A 1200-1400 category with nobody in range reports NO_ELIGIBLE_PLAYERS."""
        band = Category(
            id="r", name="1200-1400", order_idx=1,
            criteria=CategoryCriteria(min_rating=1200, max_rating=1400),
            prizes=(make_prize("r-1", 1, "1000"),),
        )
        players = [
            Player(id="a", rank=1, rating=2000),
            Player(id="b", rank=2, rating=1800),
            Player(id="c", rank=3, rating=None),
        ]
        result = allocate(make_inputs(players, [band]))

        assert result.winners == ()
        assert len(result.unfilled) == 1
        codes = result.unfilled[0].reason_codes
        assert codes[0] is CoverageReason.NO_ELIGIBLE_PLAYERS
        assert codes == (
            CoverageReason.NO_ELIGIBLE_PLAYERS,
            CoverageReason.TOO_STRICT_CRITERIA_RATING,
        )

    def test_mixed_failures_are_not_too_strict(self, make_prize, make_inputs):
        """No single field is blamed when players fail on different fields."""
        cat = Category(
            id="g", name="Girls KA",
            criteria=CategoryCriteria(gender=Gender.FEMALE, allowed_states=frozenset({"KA"})),
            prizes=(make_prize("g-1", 1, "100"),),
        )
        players = [
            Player(id="a", rank=1, gender=Gender.MALE, state="KA"),
            Player(id="b", rank=2, gender=Gender.FEMALE, state="TN"),
        ]
        result = allocate(make_inputs(players, [cat]))
        assert result.unfilled[0].reason_codes == (CoverageReason.NO_ELIGIBLE_PLAYERS,)

    def test_empty_roster(self, catalog, make_inputs):
        """Every prize is unfilled with NO_ELIGIBLE_PLAYERS."""
        result = allocate(make_inputs([], catalog.values()))
        assert result.winners == ()
        assert all(
            u.reason_codes == (CoverageReason.NO_ELIGIBLE_PLAYERS,) for u in result.unfilled
        )
        assert len(result.unfilled) == 7

    def test_inactive_category_is_critical(self, roster, catalog, make_prize, make_inputs):
        """Prizes of an inactive category are critical unfilled entries."""
        dormant = Category(id="dormant", name="Dormant", is_active=False, order_idx=9,
                           prizes=(make_prize("d-1", 1, "100"),))
        result = allocate(make_inputs(roster.values(), [*catalog.values(), dormant]))

        unfilled = {u.prize_id: u.reason_codes for u in result.unfilled}
        assert unfilled["d-1"] == (CoverageReason.CATEGORY_INACTIVE,)
        assert result.has_critical
        assert result.meta.active_category_count == 5
        assert result.meta.active_prize_count == 7


class TestConflicts:
    """Test equal-value conflicts and suggested resolutions."""

    def test_same_top_player_for_equal_value_prizes(self, equal_value, make_inputs):
        """One player topping two equal-value prizes is a conflict."""
        players, categories = equal_value
        result = allocate(make_inputs(players, categories))

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.type is ConflictType.MULTI_ELIGIBILITY
        assert conflict.impacted_players == ("x",)
        assert set(conflict.impacted_prizes) == {"A", "B"}
        assert (conflict.suggested.prize_id, conflict.suggested.player_id) == ("A", "x")

        # Conflicted prizes are withheld, not unfilled
        assert result.winners == ()
        assert result.unfilled == ()
        pending = {c.prize_id: c.reason_code for c in result.coverage}
        assert pending == {
            "A": CoverageReason.CONFLICT_PENDING,
            "B": CoverageReason.CONFLICT_PENDING,
        }

    def test_accepting_suggestion_resolves_conflict(self, equal_value, make_inputs):
        """Pinning the suggestion clears the conflict."""
        players, categories = equal_value
        inputs = make_inputs(players, categories)
        conflict = allocate(inputs).conflicts[0]

        pin = ManualDecision("A", "x", DecisionReason.SUGGESTED_RESOLUTION)
        result = allocate(inputs, [pin])

        assert result.conflicts == ()
        assert winners_by_prize(result) == {"A": "x", "B": "y"}
        manual = next(w for w in result.winners if w.prize_id == conflict.suggested.prize_id)
        assert manual.is_manual
        assert manual.reasons == (DecisionReason.SUGGESTED_RESOLUTION.value,)

    def test_no_conflict_when_budget_covers_both(self, equal_value, make_inputs):
        """A budget allowing both prizes needs no decision."""
        players, categories = equal_value
        rules = RuleConfig(multi_prize_policy=MultiPrizePolicy.MAIN_PLUS_ONE_SIDE)
        result = allocate(make_inputs(players, categories, rules))
        assert result.conflicts == ()
        assert winners_by_prize(result) == {"A": "x", "B": "x"}

    def test_no_conflict_when_top_candidates_differ(self, make_prize, make_inputs):
        """Different top candidates never conflict."""
        main = Category(id="main", name="Open", is_main=True,
                        prizes=(make_prize("A", 1, "10000"),))
        girls = Category(id="girls", name="Girls", order_idx=1,
                         criteria=CategoryCriteria(gender=Gender.FEMALE),
                         prizes=(make_prize("B", 1, "10000"),))
        players = [
            Player(id="x", rank=1, gender=Gender.MALE),
            Player(id="y", rank=2, gender=Gender.FEMALE),
        ]
        result = allocate(make_inputs(players, [main, girls]))
        assert result.conflicts == ()
        assert winners_by_prize(result) == {"A": "x", "B": "y"}

    def test_identical_side_prizes_are_a_tie(self, make_prize, make_inputs):
        """Two identical side prizes conflict as a tie."""
        s1 = Category(id="s1", name="Club A", order_idx=1, prizes=(make_prize("S1", 1, "500"),))
        s2 = Category(id="s2", name="Club B", order_idx=2, prizes=(make_prize("S2", 1, "500"),))
        players = [Player(id="x", rank=1), Player(id="y", rank=2)]
        result = allocate(make_inputs(players, [s1, s2]))

        conflict = result.conflicts[0]
        assert conflict.type is ConflictType.TIE
        assert conflict.suggested.prize_id == "S1"

    def test_different_value_is_never_a_conflict(self, make_prize, make_inputs):
        """Unequal prizes are decided by value order."""
        main = Category(id="main", name="Open", is_main=True,
                        prizes=(make_prize("A", 1, "10000"),))
        side = Category(id="side", name="Side", order_idx=1,
                        prizes=(make_prize("B", 1, "9000"),))
        players = [Player(id="x", rank=1), Player(id="y", rank=2)]
        result = allocate(make_inputs(players, [main, side]))
        assert result.conflicts == ()
        assert winners_by_prize(result) == {"A": "x", "B": "y"}


class TestManualDecisions:
    """Test pins applied before the greedy pass."""

    def test_pin_overrides_rank(self, roster, catalog, make_inputs):
        """A pin beats the rank order."""
        inputs = make_inputs(roster.values(), catalog.values())
        result = allocate(inputs, [ManualDecision("open-1", "p2")])

        winners = winners_by_prize(result)
        assert winners["open-1"] == "p2"
        assert winners["open-2"] == "p1"
        assert result.dropped_pins == ()

    def test_ineligible_pin_is_dropped(self, roster, catalog, make_inputs):
        """A pin to an ineligible player is dropped with reasons."""
        inputs = make_inputs(roster.values(), catalog.values())
        result = allocate(inputs, [ManualDecision("u12-1", "p1")])

        assert len(result.dropped_pins) == 1
        dropped = result.dropped_pins[0]
        assert dropped.prize_id == "u12-1"
        assert dropped.reason_codes[0] == DroppedPinReason.PLAYER_NOT_ELIGIBLE.value
        assert "age_above_max" in dropped.reason_codes
        # Falls back to the normal greedy choice
        assert winners_by_prize(result) == winners_by_prize(allocate(inputs))

    @pytest.mark.parametrize(
        "pin, reason",
        [
            (ManualDecision("nope", "p1"), DroppedPinReason.PRIZE_NOT_FOUND),
            (ManualDecision("open-1", "ghost"), DroppedPinReason.PLAYER_NOT_FOUND),
        ],
    )
    def test_unknown_ids_are_dropped(self, roster, catalog, make_inputs, pin, reason):
        """Pins to unknown prizes or players are dropped."""
        result = allocate(make_inputs(roster.values(), catalog.values()), [pin])
        assert result.dropped_pins[0].reason_codes == (reason.value,)

    def test_pin_to_inactive_prize_is_dropped(self, roster, make_prize, make_inputs):
        """Pins to inactive prizes are dropped."""
        cat = Category(id="c", name="C", prizes=(make_prize("off", 1, "100", active=False),))
        result = allocate(make_inputs(roster.values(), [cat]), [ManualDecision("off", "p1")])
        assert result.dropped_pins[0].reason_codes == (DroppedPinReason.PRIZE_INACTIVE.value,)

    def test_pins_exceeding_budget_raise_policy_exclusion(self, equal_value, make_inputs):
        """Pins over the budget become a policy exclusion."""
        players, categories = equal_value
        pins = [ManualDecision("A", "x"), ManualDecision("B", "x")]
        result = allocate(make_inputs(players, categories), pins)

        assert winners_by_prize(result) == {"A": "x"}
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.type is ConflictType.POLICY_EXCLUSION
        assert conflict.impacted_prizes == ("B",)
        assert conflict.suggested is None

    def test_pinned_player_is_not_reused(self, roster, catalog, make_inputs):
        """A pinned player counts against their budget."""
        inputs = make_inputs(roster.values(), catalog.values())
        result = allocate(inputs, [ManualDecision("ka-1", "p1")])
        counts = Counter(w.player_id for w in result.winners)
        assert counts["p1"] == 1
        assert winners_by_prize(result)["ka-1"] == "p1"


class TestEngineBoundary:
    """Test the engine's internal error boundary."""

    def test_unexpected_error_degrades_result(self, roster, catalog, make_inputs, monkeypatch):
        """Solver errors degrade to INTERNAL_ERROR coverage."""
        def boom(self, decisions=()):
            raise RuntimeError("boom")

        monkeypatch.setattr("app.services.allocation.engine.AllocationSolver.solve", boom)
        inputs = make_inputs(roster.values(), catalog.values())
        result = AllocationEngine(default_rules=inputs.rules).run(inputs)

        assert result.winners == ()
        assert result.has_critical
        assert result.meta.internal_error == "RuntimeError: boom"
        assert len(result.coverage) == 1
        assert result.coverage[0].reason_code is CoverageReason.INTERNAL_ERROR
        assert len(result.unfilled) == 7
        assert all(u.reason_codes == (CoverageReason.INTERNAL_ERROR,) for u in result.unfilled)

    def test_meta_counts(self, roster, catalog, make_inputs):
        """Meta summarizes the run."""
        result = allocate(make_inputs(roster.values(), catalog.values()), dry_run=False)
        meta = result.meta
        assert meta.player_count == 6
        assert meta.active_prize_count == 7
        assert meta.winners_count == 5
        assert meta.unfilled_count == 2
        assert meta.conflict_count == 0
        assert not meta.dry_run

    def test_solve_returns_prize_order(self, roster, catalog, make_inputs):
        """solve exposes prize order and traces."""
        run = solve(make_inputs(roster.values(), catalog.values()))
        assert run.prize_order[:3] == ("open-1", "open-2", "open-3")
        assert len(run.traces) == 7
