"""Preview/commit controller.

Drives one tournament through the allocation workflow:

    draft -> preview_computed -> {has_conflicts, ready_to_commit} -> committed

Previews are free: no versioned effect, run as often as needed, each one
re-applying the latest manual decisions. A commit re-runs the solver on the
exact inputs and decisions of the last preview and stamps the result with
the next version number. Once recorded, a version is immutable history.

SAFETY: commit is rejected (no version, no state change) when
- the controller is not in ready_to_commit
- the request inputs differ from the last preview
- the commit run disagrees with the preview on conflicts or winners

Calls on one controller are serialized with a lock because the staleness
check compares against the immediately preceding preview.
"""

import hashlib
import json
import threading
from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from app.config.rules import RuleConfig, resolve_reference_date
from app.models.domain import (
    AllocateRequest,
    AllocationResult,
    CommittedVersion,
    Conflict,
    ManualDecision,
)
from app.services.allocation import overrides
from app.services.allocation.engine import AllocationEngine
from app.services.allocation.errors import (
    CommitNotAllowedError,
    ConflictNotFoundError,
    StaleCommitError,
    VersionNotFoundError,
)
from app.services.allocation.overrides import ManualDecisions
from app.services.allocation.solver import AllocationInputs

logger = structlog.get_logger(__name__)


class AllocationState(str, Enum):
    """Workflow states of one tournament's allocation."""
    DRAFT = "draft"
    PREVIEW_COMPUTED = "preview_computed"
    HAS_CONFLICTS = "has_conflicts"
    READY_TO_COMMIT = "ready_to_commit"
    COMMITTED = "committed"


# Valid state transitions
TRANSITIONS: dict[AllocationState, tuple[AllocationState, ...]] = {
    AllocationState.DRAFT: (AllocationState.PREVIEW_COMPUTED,),
    AllocationState.PREVIEW_COMPUTED: (
        AllocationState.PREVIEW_COMPUTED,
        AllocationState.HAS_CONFLICTS,
        AllocationState.READY_TO_COMMIT,
        AllocationState.DRAFT,
    ),
    AllocationState.HAS_CONFLICTS: (AllocationState.PREVIEW_COMPUTED, AllocationState.DRAFT),
    AllocationState.READY_TO_COMMIT: (
        AllocationState.COMMITTED,
        AllocationState.PREVIEW_COMPUTED,
        AllocationState.DRAFT,
    ),
    # A new cycle targets the next version
    AllocationState.COMMITTED: (AllocationState.PREVIEW_COMPUTED, AllocationState.DRAFT),
}


@dataclass(frozen=True)
class PreviewRecord:
    """The last preview: what commit must reproduce."""

    request_fingerprint: str
    run_fingerprint: str
    decisions: tuple[ManualDecision, ...]
    result: AllocationResult


@dataclass(frozen=True)
class CommitOutcome:
    """Result of a successful commit."""

    version: CommittedVersion
    result: AllocationResult
    already_committed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.result.to_dict(),
            "version": self.version.version,
            "allocationsCount": self.version.allocations_count,
            "alreadyCommitted": self.already_committed,
        }


def _canonical(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _canonical(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (frozenset, set)):
        return sorted(_canonical(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    return value


def fingerprint(inputs: AllocationInputs, decisions: tuple[ManualDecision, ...]) -> str:
    """Stable digest of everything a run depends on."""
    payload = {
        "inputs": _canonical(inputs),
        "decisions": sorted(
            (_canonical(d) for d in decisions), key=lambda d: (d["prize_id"], d["player_id"])
        ),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class AllocationController:
    """Preview/commit state machine for one tournament."""

    def __init__(self, tournament_id: str, engine: AllocationEngine | None = None):
        self.tournament_id = tournament_id
        self.engine = engine or AllocationEngine()
        self._lock = threading.Lock()
        self._state = AllocationState.DRAFT
        self._decisions = ManualDecisions()
        self._last_preview: PreviewRecord | None = None
        self._versions: dict[int, CommittedVersion] = {}
        self._last_version = 0

    @property
    def state(self) -> AllocationState:
        return self._state

    @property
    def decisions(self) -> ManualDecisions:
        return self._decisions

    @property
    def last_preview(self) -> AllocationResult | None:
        return self._last_preview.result if self._last_preview else None

    @property
    def latest_version(self) -> int:
        return self._last_version

    def _transition(self, new_state: AllocationState) -> None:
        if new_state not in TRANSITIONS[self._state]:
            raise CommitNotAllowedError(
                f"Invalid transition: {self._state.value} -> {new_state.value}",
                state=self._state.value,
            )
        logger.debug(
            "allocation_state_changed",
            tournament_id=self.tournament_id,
            from_state=self._state.value,
            to_state=new_state.value,
        )
        self._state = new_state

    def _build_inputs(self, request: AllocateRequest) -> AllocationInputs:
        rules: RuleConfig = self.engine.default_rules.merged(request.rule_config)
        start = request.tournament_start_date
        if start is None:
            start = datetime.now(timezone.utc).date()
            logger.warning(
                "tournament_start_date_missing",
                tournament_id=self.tournament_id,
                fallback=start.isoformat(),
            )
        return AllocationInputs(
            tournament_id=self.tournament_id,
            players=tuple(request.players),
            categories=tuple(request.categories),
            rules=rules,
            reference_date=resolve_reference_date(rules, start),
        )

    # ------------------------------------------------------------------
    # Preview / commit
    # ------------------------------------------------------------------

    def preview(self, request: AllocateRequest) -> AllocationResult:
        """
        Run a dry-run allocation with the latest manual decisions.

        Request overrides are merged into the stored decisions first. Pins
        the solver drops (player no longer eligible) are removed from the
        stored decisions and reported on the result.
        """
        with self._lock:
            inputs = self._build_inputs(request)
            request_overrides = tuple(request.manual_overrides)
            decisions = self._decisions.merge(request_overrides)
            used = decisions.decisions()

            result = self.engine.run(inputs, used, dry_run=True)

            if result.dropped_pins:
                decisions = decisions.without(d.prize_id for d in result.dropped_pins)
            self._decisions = decisions
            self._last_preview = PreviewRecord(
                request_fingerprint=fingerprint(inputs, request_overrides),
                run_fingerprint=fingerprint(inputs, used),
                decisions=used,
                result=result,
            )

            self._transition(AllocationState.PREVIEW_COMPUTED)
            if result.conflicts:
                self._transition(AllocationState.HAS_CONFLICTS)
            elif not result.has_critical:
                self._transition(AllocationState.READY_TO_COMMIT)

            logger.info(
                "allocation_preview",
                tournament_id=self.tournament_id,
                state=self._state.value,
                winners=len(result.winners),
                conflicts=len(result.conflicts),
                unfilled=len(result.unfilled),
                pins=len(used),
            )
            return result

    def commit(self, request: AllocateRequest) -> CommitOutcome:
        """
        Commit the last preview as the next immutable version.

        Raises:
            CommitNotAllowedError: not in ready_to_commit
            StaleCommitError: inputs or output disagree with the last preview
        """
        with self._lock:
            if self._state is not AllocationState.READY_TO_COMMIT or self._last_preview is None:
                logger.warning(
                    "allocation_commit_rejected",
                    tournament_id=self.tournament_id,
                    state=self._state.value,
                    reason="not_ready",
                )
                raise CommitNotAllowedError(
                    f"Cannot commit from state '{self._state.value}'; run a conflict-free preview first",
                    state=self._state.value,
                )

            preview = self._last_preview
            inputs = self._build_inputs(request)
            if fingerprint(inputs, tuple(request.manual_overrides)) != preview.request_fingerprint:
                logger.warning(
                    "allocation_commit_rejected",
                    tournament_id=self.tournament_id,
                    reason="inputs_changed",
                )
                raise StaleCommitError(
                    "Commit inputs differ from the last preview; run preview again",
                    reason="inputs_changed",
                )

            result = self.engine.run(inputs, preview.decisions, dry_run=False)
            if (
                len(result.conflicts) != len(preview.result.conflicts)
                or result.winner_set() != preview.result.winner_set()
                or result.has_critical
            ):
                logger.warning(
                    "allocation_commit_rejected",
                    tournament_id=self.tournament_id,
                    reason="result_changed",
                    preview_conflicts=len(preview.result.conflicts),
                    commit_conflicts=len(result.conflicts),
                )
                raise StaleCommitError(
                    "Commit result differs from the last preview; run preview again",
                    reason="result_changed",
                )

            latest = self._versions.get(self._last_version)
            if latest is not None and latest.fingerprint == preview.run_fingerprint:
                self._transition(AllocationState.COMMITTED)
                logger.info(
                    "allocation_commit_idempotent",
                    tournament_id=self.tournament_id,
                    version=latest.version,
                )
                return CommitOutcome(version=latest, result=result, already_committed=True)

            # Build the full version before publishing it
            version = CommittedVersion(
                tournament_id=self.tournament_id,
                version=self._last_version + 1,
                fingerprint=preview.run_fingerprint,
                winners=result.winners,
                committed_at=datetime.now(timezone.utc),
            )
            self._transition(AllocationState.COMMITTED)
            self._versions[version.version] = version
            self._last_version = version.version

            logger.info(
                "allocation_committed",
                tournament_id=self.tournament_id,
                version=version.version,
                allocations=version.allocations_count,
            )
            return CommitOutcome(version=version, result=result)

    def run(self, request: AllocateRequest) -> AllocationResult | CommitOutcome:
        """Dispatch on request.dry_run."""
        if request.dry_run:
            return self.preview(request)
        return self.commit(request)

    # ------------------------------------------------------------------
    # Manual decisions
    # ------------------------------------------------------------------

    def _find_conflict(self, conflict_id: str) -> Conflict:
        if self._last_preview is not None:
            for conflict in self._last_preview.result.conflicts:
                if conflict.id == conflict_id:
                    return conflict
        raise ConflictNotFoundError(
            f"Conflict {conflict_id} not found in the last preview",
            conflict_id=conflict_id,
        )

    def _set_decisions(self, decisions: ManualDecisions) -> None:
        self._decisions = decisions
        if self._state is not AllocationState.DRAFT:
            self._transition(AllocationState.DRAFT)

    def accept_conflict(self, conflict_id: str) -> ManualDecision:
        """Pin the suggested resolution of one conflict."""
        with self._lock:
            conflict = self._find_conflict(conflict_id)
            if conflict.suggested is None:
                raise ConflictNotFoundError(
                    f"Conflict {conflict_id} has no suggested resolution",
                    conflict_id=conflict_id,
                )
            decision = overrides.accept(conflict)
            self._set_decisions(self._decisions.merge([decision]))
            logger.info(
                "allocation_conflict_accepted",
                tournament_id=self.tournament_id,
                conflict_id=conflict_id,
                prize=decision.prize_id,
                player=decision.player_id,
            )
            return decision

    def accept_all_conflicts(self) -> list[ManualDecision]:
        """Pin every non-colliding conflict suggestion of the last preview."""
        with self._lock:
            if self._last_preview is None:
                return []
            preview = self._last_preview.result
            prize_order = [c.prize_id for c in preview.coverage if c.prize_id is not None]
            accepted = overrides.accept_all(preview.conflicts, prize_order)
            if accepted:
                self._set_decisions(self._decisions.merge(accepted))
            logger.info(
                "allocation_conflicts_accepted",
                tournament_id=self.tournament_id,
                accepted=len(accepted),
                conflicts=len(preview.conflicts),
            )
            return accepted

    def override(self, prize_id: str, player_id: str) -> ManualDecision:
        """Pin a player to a prize, replacing any earlier pin for it."""
        with self._lock:
            decision = overrides.overrides_from_pairs([(prize_id, player_id)])[0]
            self._set_decisions(self._decisions.merge([decision]))
            return decision

    def clear_override(self, prize_id: str) -> bool:
        """Remove the pin for a prize. Returns False if there was none."""
        with self._lock:
            if prize_id not in self._decisions:
                return False
            self._set_decisions(self._decisions.without([prize_id]))
            return True

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self) -> tuple[CommittedVersion, ...]:
        with self._lock:
            return tuple(self._versions[v] for v in sorted(self._versions))

    def get_version(self, version: int) -> CommittedVersion:
        with self._lock:
            try:
                return self._versions[version]
            except KeyError:
                raise VersionNotFoundError(
                    f"Version {version} not found", version=version
                ) from None


class AllocationRegistry:
    """One controller per tournament; tournaments never interact."""

    def __init__(self, engine: AllocationEngine | None = None):
        self.engine = engine or AllocationEngine()
        self._controllers: dict[str, AllocationController] = {}
        self._lock = threading.Lock()

    def get(self, tournament_id: str) -> AllocationController:
        with self._lock:
            controller = self._controllers.get(tournament_id)
            if controller is None:
                controller = AllocationController(tournament_id, self.engine)
                self._controllers[tournament_id] = controller
            return controller

    def __contains__(self, tournament_id: str) -> bool:
        with self._lock:
            return tournament_id in self._controllers
