"""Pytest configuration and fixtures for prize allocation tests."""

from datetime import date
from decimal import Decimal

import pytest

from app.config.rules import RuleConfig
from app.models.domain import (
    Category,
    CategoryCriteria,
    Gender,
    Player,
    Prize,
)
from app.services.allocation.solver import AllocationInputs

REFERENCE_DATE = date(2026, 1, 1)


def _make_prize(prize_id, place=1, cash="0", trophy=False, medal=False, active=True):
    """Prize with cash given as a string."""
    return Prize(
        id=prize_id,
        place=place,
        cash_amount=Decimal(cash),
        has_trophy=trophy,
        has_medal=medal,
        is_active=active,
    )


def _make_inputs(players, categories, rules=None, reference_date=REFERENCE_DATE, tournament_id="t1"):
    """Solver inputs with default rules."""
    return AllocationInputs(
        tournament_id=tournament_id,
        players=tuple(players),
        categories=tuple(categories),
        rules=rules or RuleConfig(),
        reference_date=reference_date,
    )


@pytest.fixture
def rules():
    """Default rule configuration."""
    return RuleConfig()


@pytest.fixture
def roster():
    """
    Sample roster of six players, ranked 1-6.

    p1: strong adult male, rated 2100
    p2: adult female, rated 1850
    p3: 11 year old girl, rated 1350
    p4: 9 year old boy, rated 1250
    p5: unrated adult male, no DOB
    p6: adult male from another state, rated 1300
    """
    return {
        "p1": Player(id="p1", rank=1, name="Arjun", rating=2100, dob=date(1990, 5, 1),
                     gender=Gender.MALE, state="KA"),
        "p2": Player(id="p2", rank=2, name="Bhavna", rating=1850, dob=date(1995, 3, 10),
                     gender=Gender.FEMALE, state="KA"),
        "p3": Player(id="p3", rank=3, name="Charu", rating=1350, dob=date(2014, 6, 1),
                     gender=Gender.FEMALE, state="KA"),
        "p4": Player(id="p4", rank=4, name="Dev", rating=1250, dob=date(2016, 8, 20),
                     gender=Gender.MALE, state="KA"),
        "p5": Player(id="p5", rank=5, name="Eshan", rating=None, dob=None,
                     gender=Gender.MALE, state="KA"),
        "p6": Player(id="p6", rank=6, name="Farid", rating=1300, dob=date(1980, 1, 15),
                     gender=Gender.MALE, state="TN"),
    }


@pytest.fixture
def catalog():
    """
    Sample catalog: one main category and four side categories.

    Brochure order: Open (main), Below 1400, U12, Best Female, Karnataka.
    """
    return {
        "open": Category(
            id="open", name="Open", is_main=True, order_idx=0,
            prizes=(
                _make_prize("open-1", 1, "10000", trophy=True),
                _make_prize("open-2", 2, "5000", trophy=True),
                _make_prize("open-3", 3, "3000", medal=True),
            ),
        ),
        "below1400": Category(
            id="below1400", name="Below 1400", order_idx=1,
            criteria=CategoryCriteria(max_rating=1400),
            prizes=(_make_prize("b1400-1", 1, "2000", trophy=True),),
        ),
        "u12": Category(
            id="u12", name="U12", order_idx=2,
            criteria=CategoryCriteria(max_age=12),
            prizes=(_make_prize("u12-1", 1, "1500", trophy=True),),
        ),
        "female": Category(
            id="female", name="Best Female", order_idx=3,
            criteria=CategoryCriteria(gender=Gender.FEMALE),
            prizes=(_make_prize("female-1", 1, "2000", trophy=True),),
        ),
        "ka": Category(
            id="ka", name="Best Karnataka", order_idx=4,
            criteria=CategoryCriteria(allowed_states=frozenset({"ka"})),
            prizes=(_make_prize("ka-1", 1, "1000", medal=True),),
        ),
    }


@pytest.fixture
def make_prize():
    """Factory: make_prize(id, place, cash, trophy=, medal=, active=)."""
    return _make_prize


@pytest.fixture
def make_inputs():
    """Factory: make_inputs(players, categories, rules=None, reference_date=...)."""
    return _make_inputs
