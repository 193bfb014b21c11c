"""Prize Allocator FastAPI application.

Prize allocation engine for chess tournaments: eligibility, ranking,
conflict detection, manual resolution and versioned commits.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import allocations, config, health
from app.config import get_settings
from app.services.allocation.errors import (
    AllocationError,
    ConflictNotFoundError,
    VersionNotFoundError,
)

settings = get_settings()

# stdlib handler that structlog's LoggerFactory writes through
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(message)s",
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "starting_prize_allocator",
        version="0.1.0",
        rules=settings.default_rule_config().to_dict(),
    )
    yield
    logger.info("shutting_down_prize_allocator")


# Create FastAPI application
app = FastAPI(
    title="Prize Allocator",
    description="Prize allocation engine for chess tournaments",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(config.router)
app.include_router(allocations.router)


# Error handlers
@app.exception_handler(AllocationError)
async def allocation_error_handler(request: Request, exc: AllocationError):
    """Workflow errors: 404 for unknown ids, 409 for rejected transitions."""
    if isinstance(exc, (ConflictNotFoundError, VersionNotFoundError)):
        status_code = 404
    else:
        status_code = 409
    logger.warning(
        "allocation_request_rejected",
        path=request.url.path,
        code=exc.code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    """Custom 500 handler."""
    logger.error("server_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
