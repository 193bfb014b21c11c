"""Prize allocation engine.

Runs the solver and coverage reporter over one tournament's inputs and
assembles the immutable AllocationResult.

CRITICAL: this is the error boundary of the engine. Data problems are
already reason codes by the time they get here; anything that still raises
is an internal error. It is caught, logged and reported as a single critical
INTERNAL_ERROR coverage entry so preview always returns a result and commit
is blocked.
"""

from collections.abc import Iterable

import structlog

from app.config.rules import RuleConfig
from app.models.domain import (
    AllocationMeta,
    AllocationResult,
    CoverageReason,
    ManualDecision,
    UnfilledEntry,
)
from app.services.allocation.coverage import (
    build_coverage,
    internal_error_coverage,
    summarize_categories,
)
from app.services.allocation.solver import AllocationInputs, AllocationSolver, SolverRun

logger = structlog.get_logger(__name__)


class AllocationEngine:
    """
    Compute prize allocations.

    The engine is stateless between runs: every call is a pure function of
    (inputs, decisions) and returns a fresh result.
    """

    def __init__(self, default_rules: RuleConfig | None = None):
        """
        Initialize allocation engine.

        Args:
            default_rules: Rules used when a request carries none. If not
                   provided, loads from defaults.yaml via settings
        """
        if default_rules is None:
            from app.config import get_settings

            default_rules = get_settings().default_rule_config()
        self.default_rules = default_rules

    def run(
        self,
        inputs: AllocationInputs,
        decisions: Iterable[ManualDecision] = (),
        dry_run: bool = True,
    ) -> AllocationResult:
        """
        Allocate prizes for one tournament.

        Args:
            inputs: Roster, catalog, rules and reference date
            decisions: Manual pins applied before the greedy pass
            dry_run: Preview (True) or commit run (False)

        Returns:
            AllocationResult; degraded with INTERNAL_ERROR on failure
        """
        decisions = tuple(decisions)
        try:
            run = AllocationSolver(inputs).solve(decisions)
            result = self.assemble(run, dry_run)
        except Exception as e:
            logger.exception(
                "allocation_internal_error",
                tournament_id=inputs.tournament_id,
                error=str(e),
            )
            return self.failed_result(inputs, dry_run, f"{type(e).__name__}: {e}")

        logger.info(
            "allocation_complete",
            tournament_id=inputs.tournament_id,
            players=result.meta.player_count,
            prizes=result.meta.active_prize_count,
            winners=result.meta.winners_count,
            conflicts=result.meta.conflict_count,
            unfilled=result.meta.unfilled_count,
            dropped_pins=len(result.dropped_pins),
            dry_run=dry_run,
        )
        return result

    def assemble(self, run: SolverRun, dry_run: bool) -> AllocationResult:
        """Attach coverage and meta counts to a solver run."""
        coverage = build_coverage(run)
        inputs = run.inputs
        meta = AllocationMeta(
            player_count=len(inputs.players),
            active_category_count=len(inputs.active_categories),
            active_prize_count=len(inputs.active_prize_entries()),
            winners_count=len(run.winners),
            conflict_count=len(run.conflicts),
            unfilled_count=len(run.unfilled),
            dry_run=dry_run,
        )
        if run.unfilled:
            logger.debug(
                "allocation_unfilled_summary",
                count=len(run.unfilled),
                reasons=sorted({c.value for u in run.unfilled for c in u.reason_codes}),
            )
        return AllocationResult(
            winners=run.winners,
            conflicts=run.conflicts,
            unfilled=run.unfilled,
            coverage=coverage,
            meta=meta,
            dropped_pins=run.dropped_pins,
            categories=summarize_categories(run, coverage),
        )

    def failed_result(
        self, inputs: AllocationInputs, dry_run: bool, message: str
    ) -> AllocationResult:
        """Degraded result: nothing awarded, every prize INTERNAL_ERROR."""
        unfilled = tuple(
            UnfilledEntry(entry.prize_id, (CoverageReason.INTERNAL_ERROR,))
            for entry in inputs.prize_entries()
        )
        return AllocationResult(
            winners=(),
            conflicts=(),
            unfilled=unfilled,
            coverage=internal_error_coverage(message),
            meta=AllocationMeta(
                player_count=len(inputs.players),
                active_category_count=len(inputs.active_categories),
                active_prize_count=len(inputs.active_prize_entries()),
                winners_count=0,
                conflict_count=0,
                unfilled_count=len(unfilled),
                dry_run=dry_run,
                internal_error=message,
            ),
        )


# Convenience function for testing
def allocate(
    inputs: AllocationInputs,
    decisions: Iterable[ManualDecision] = (),
    dry_run: bool = True,
) -> AllocationResult:
    """
    Quick allocation function for testing.

    Uses the rules already carried by `inputs`.
    """
    engine = AllocationEngine(default_rules=inputs.rules)
    return engine.run(inputs, decisions, dry_run=dry_run)
