"""Prize allocation API endpoints.

Thin adapter over the per-tournament AllocationController: validates the
request body, converts it into domain types and returns the result's JSON
contract. Workflow errors (stale commit, unknown conflict...) are raised as
AllocationError and rendered by the handler registered in app.main.

Endpoints are plain `def` so FastAPI runs them in its threadpool; the
controller serializes calls per tournament with a lock.
"""

from datetime import date
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.api.dependencies import get_registry
from app.models.domain import (
    AllocateRequest,
    Category,
    CategoryCriteria,
    CategoryType,
    ManualDecision,
    Player,
    Prize,
    normalize_gender,
)
from app.services.allocation import AllocationRegistry

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/allocations", tags=["allocations"])


# =============================================================================
# Request Models
# =============================================================================

class CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlayerIn(CamelModel):
    id: str
    rank: int = Field(gt=0)
    name: str = ""
    rating: int | None = None
    dob: date | None = None
    birth_year: int | None = None
    gender: str | None = None
    state: str | None = None
    city: str | None = None
    club: str | None = None
    federation: str | None = None
    disability: str | None = None
    tags: list[str] = []

    def to_domain(self) -> Player:
        return Player(
            id=self.id,
            rank=self.rank,
            name=self.name,
            rating=self.rating,
            dob=self.dob,
            birth_year=self.birth_year,
            gender=normalize_gender(self.gender),
            state=self.state,
            city=self.city,
            club=self.club,
            federation=self.federation,
            disability=self.disability,
            tags=frozenset(self.tags),
        )


class CriteriaIn(CamelModel):
    gender: str | None = None
    min_age: int | None = None
    max_age: int | None = None
    min_rating: int | None = None
    max_rating: int | None = None
    allowed_states: list[str] = []
    allowed_cities: list[str] = []
    allowed_clubs: list[str] = []
    allowed_disabilities: list[str] = []
    required_tags: list[str] = []

    def to_domain(self) -> CategoryCriteria:
        return CategoryCriteria(
            gender=normalize_gender(self.gender),
            min_age=self.min_age,
            max_age=self.max_age,
            min_rating=self.min_rating,
            max_rating=self.max_rating,
            allowed_states=frozenset(self.allowed_states),
            allowed_cities=frozenset(self.allowed_cities),
            allowed_clubs=frozenset(self.allowed_clubs),
            allowed_disabilities=frozenset(self.allowed_disabilities),
            required_tags=frozenset(self.required_tags),
        )


class PrizeIn(CamelModel):
    id: str
    place: int = Field(gt=0)
    cash_amount: Decimal = Decimal("0")
    has_trophy: bool = False
    has_medal: bool = False
    is_active: bool = True

    def to_domain(self) -> Prize:
        return Prize(
            id=self.id,
            place=self.place,
            cash_amount=self.cash_amount,
            has_trophy=self.has_trophy,
            has_medal=self.has_medal,
            is_active=self.is_active,
        )


class CategoryIn(CamelModel):
    id: str
    name: str
    is_main: bool = False
    order_idx: int = 0
    is_active: bool = True
    category_type: CategoryType = CategoryType.STANDARD
    criteria: CriteriaIn = CriteriaIn()
    prizes: list[PrizeIn] = []

    def to_domain(self) -> Category:
        return Category(
            id=self.id,
            name=self.name,
            is_main=self.is_main,
            order_idx=self.order_idx,
            is_active=self.is_active,
            category_type=self.category_type,
            criteria=self.criteria.to_domain(),
            prizes=tuple(p.to_domain() for p in self.prizes),
        )


class PickIn(CamelModel):
    prize_id: str
    player_id: str


class AllocateRequestIn(CamelModel):
    """Body of POST /api/allocations."""
    tournament_id: str
    players: list[PlayerIn]
    categories: list[CategoryIn]
    rule_config: dict[str, Any] | None = None
    manual_overrides: list[PickIn] = []
    dry_run: bool = True
    tournament_start_date: date | None = None

    def to_domain(self) -> AllocateRequest:
        return AllocateRequest(
            tournament_id=self.tournament_id,
            players=tuple(p.to_domain() for p in self.players),
            categories=tuple(c.to_domain() for c in self.categories),
            rule_config=self.rule_config,
            manual_overrides=tuple(
                ManualDecision(o.prize_id, o.player_id) for o in self.manual_overrides
            ),
            dry_run=self.dry_run,
            tournament_start_date=self.tournament_start_date,
        )


class OverrideIn(CamelModel):
    player_id: str


# =============================================================================
# Endpoints
# =============================================================================

@router.post("")
def allocate(
    body: AllocateRequestIn,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """
    Preview (dryRun=true) or commit (dryRun=false) an allocation.

    Commit returns the preview contract plus version, allocationsCount and
    alreadyCommitted.
    """
    request = body.to_domain()
    controller = registry.get(request.tournament_id)
    return controller.run(request).to_dict()


@router.get("/{tournament_id}/state")
def get_state(
    tournament_id: str,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Workflow state, stored decisions and the last preview's counts."""
    controller = registry.get(tournament_id)
    preview = controller.last_preview
    return {
        "tournamentId": tournament_id,
        "state": controller.state.value,
        "latestVersion": controller.latest_version,
        "decisions": controller.decisions.to_list(),
        "lastPreview": preview.meta.to_dict() if preview else None,
    }


@router.post("/{tournament_id}/conflicts/accept-all")
def accept_all_conflicts(
    tournament_id: str,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Accept every non-colliding suggested resolution of the last preview."""
    controller = registry.get(tournament_id)
    accepted = controller.accept_all_conflicts()
    return {
        "state": controller.state.value,
        "accepted": [d.to_dict() for d in accepted],
        "decisions": controller.decisions.to_list(),
    }


@router.post("/{tournament_id}/conflicts/{conflict_id}/accept")
def accept_conflict(
    tournament_id: str,
    conflict_id: str,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Accept one conflict's suggested resolution."""
    controller = registry.get(tournament_id)
    decision = controller.accept_conflict(conflict_id)
    return {
        "state": controller.state.value,
        "accepted": decision.to_dict(),
        "decisions": controller.decisions.to_list(),
    }


@router.put("/{tournament_id}/decisions/{prize_id}")
def put_override(
    tournament_id: str,
    prize_id: str,
    body: OverrideIn,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Pin a player to a prize."""
    controller = registry.get(tournament_id)
    decision = controller.override(prize_id, body.player_id)
    logger.info(
        "allocation_override_set",
        tournament_id=tournament_id,
        prize=prize_id,
        player=body.player_id,
    )
    return {
        "state": controller.state.value,
        "decision": decision.to_dict(),
        "decisions": controller.decisions.to_list(),
    }


@router.delete("/{tournament_id}/decisions/{prize_id}")
def delete_override(
    tournament_id: str,
    prize_id: str,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Remove the pin for a prize."""
    controller = registry.get(tournament_id)
    removed = controller.clear_override(prize_id)
    return {
        "state": controller.state.value,
        "removed": removed,
        "decisions": controller.decisions.to_list(),
    }


@router.get("/{tournament_id}/versions")
def list_versions(
    tournament_id: str,
    registry: AllocationRegistry = Depends(get_registry),
) -> list[dict[str, Any]]:
    """All committed versions, oldest first."""
    controller = registry.get(tournament_id)
    return [v.to_dict() for v in controller.history()]


@router.get("/{tournament_id}/versions/{version}")
def get_version(
    tournament_id: str,
    version: int,
    registry: AllocationRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """One committed version."""
    controller = registry.get(tournament_id)
    return controller.get_version(version).to_dict()
