"""Configuration for the prize allocation service."""

from app.config.rules import (
    AgeBandPolicy,
    AgeCutoffPolicy,
    MultiPrizePolicy,
    PriorityMode,
    RuleConfig,
    TieBreakField,
)
from app.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "RuleConfig",
    "AgeBandPolicy",
    "AgeCutoffPolicy",
    "MultiPrizePolicy",
    "PriorityMode",
    "TieBreakField",
]
