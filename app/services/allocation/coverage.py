"""Allocation coverage reporting.

Turns a solver run into one CoverageEntry per prize: how many players were
eligible, how many remained after the prize budget was applied, who won and,
for prizes without a winner, the top reason code and a human diagnosis.

Pure read-only enrichment: winners, conflicts and unfilled entries pass
through untouched.
"""

from collections.abc import Sequence

from app.models.domain import (
    CategorySummary,
    CoverageEntry,
    CoverageReason,
    PrizeEntry,
)
from app.services.allocation.solver import PrizeTrace, SolverRun

REASON_LABELS: dict[CoverageReason, str] = {
    CoverageReason.NO_ELIGIBLE_PLAYERS: "No eligible winner (no players match criteria)",
    CoverageReason.BLOCKED_BY_ONE_PRIZE_POLICY: "No eligible winner (blocked by one-prize policy)",
    CoverageReason.TOO_STRICT_CRITERIA_RATING: "No eligible winner (rating criteria)",
    CoverageReason.TOO_STRICT_CRITERIA_AGE: "No eligible winner (age criteria)",
    CoverageReason.TOO_STRICT_CRITERIA_GENDER: "No eligible winner (gender criteria)",
    CoverageReason.TOO_STRICT_CRITERIA_LOCATION: "No eligible winner (location criteria)",
    CoverageReason.TOO_STRICT_CRITERIA_TYPE_OR_GROUP: "No eligible winner (type/group criteria)",
    CoverageReason.CATEGORY_INACTIVE: "Category is inactive",
    CoverageReason.INTERNAL_ERROR: "Internal error",
    CoverageReason.CONFLICT_PENDING: "Waiting for organizer to resolve a conflict",
}


def reason_label(code: CoverageReason | None) -> str:
    """Human-readable label for a reason code."""
    if code is None:
        return ""
    return REASON_LABELS[code]


def _diagnosis(trace: PrizeTrace) -> str | None:
    if not trace.reason_codes:
        return None
    primary = trace.reason_codes[0]
    label = reason_label(primary)
    if primary is CoverageReason.BLOCKED_BY_ONE_PRIZE_POLICY:
        return f"{label}: {trace.eligible_before} eligible, all already hold a prize"
    if primary is CoverageReason.NO_ELIGIBLE_PLAYERS and len(trace.reason_codes) > 1:
        strict = ", ".join(reason_label(c) for c in trace.reason_codes[1:])
        return f"{label}; {strict}"
    return label


def coverage_entry(trace: PrizeTrace) -> CoverageEntry:
    """Coverage record for one prize."""
    entry: PrizeEntry = trace.entry
    return CoverageEntry(
        prize_id=entry.prize_id,
        category_id=entry.category.id,
        category_name=entry.category.name,
        place=entry.prize.place,
        prize_label=entry.label,
        prize_type=entry.prize.prize_type,
        amount=entry.prize.cash_amount,
        is_main=entry.category.is_main,
        eligible_count=trace.eligible_before,
        candidates_after_policy=trace.eligible_after,
        picked_count=1 if trace.winner_id else 0,
        winner_id=trace.winner_id,
        reason_code=trace.reason_codes[0] if trace.reason_codes else None,
        raw_fail_codes=trace.fail_codes,
        diagnosis=_diagnosis(trace),
    )


def build_coverage(run: SolverRun) -> tuple[CoverageEntry, ...]:
    """One coverage entry per processed prize, in allocation order."""
    return tuple(coverage_entry(trace) for trace in run.traces)


def internal_error_coverage(message: str) -> tuple[CoverageEntry, ...]:
    """The single critical entry reported when a run fails unexpectedly."""
    return (
        CoverageEntry(
            prize_id=None,
            category_id=None,
            category_name="",
            place=None,
            prize_label="Allocation failed",
            prize_type="other",
            amount=None,
            is_main=False,
            eligible_count=0,
            candidates_after_policy=0,
            picked_count=0,
            winner_id=None,
            reason_code=CoverageReason.INTERNAL_ERROR,
            diagnosis=f"{reason_label(CoverageReason.INTERNAL_ERROR)}: {message}",
        ),
    )


def summarize_categories(
    run: SolverRun, coverage: Sequence[CoverageEntry]
) -> tuple[CategorySummary, ...]:
    """Per-category filled/unfilled totals, in brochure order."""
    by_category: dict[str, list[CoverageEntry]] = {}
    for entry in coverage:
        if entry.category_id is not None:
            by_category.setdefault(entry.category_id, []).append(entry)

    summaries = []
    for category in sorted(run.inputs.categories, key=lambda c: (c.order_idx, c.id)):
        entries = by_category.get(category.id, [])
        if not entries:
            continue
        filled = sum(1 for e in entries if e.picked_count)
        summaries.append(
            CategorySummary(
                category_id=category.id,
                category_name=category.name,
                is_main=category.is_main,
                order_idx=category.order_idx,
                total_prizes=len(entries),
                filled_prizes=filled,
                unfilled_prizes=sum(1 for e in entries if e.is_unfilled),
            )
        )
    return tuple(summaries)
