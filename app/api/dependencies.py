"""FastAPI dependencies for the prize allocation service."""

from functools import lru_cache

from app.services.allocation import AllocationEngine, AllocationRegistry


@lru_cache
def get_registry() -> AllocationRegistry:
    """Process-wide registry of per-tournament allocation controllers."""
    return AllocationRegistry(engine=AllocationEngine())
