"""
Clinivoice Backend: Health Check Route
=======================================

What:  Health check endpoint for monitoring and load balancer checks.
How:   Runs SELECT 1 against the database and reads each provider's circuit
       breaker; no provider API calls are made.
Who:   Called by container health checks, load balancers and monitoring.

Status levels:
    - healthy:   database reachable, at least one provider available
    - degraded:  database reachable, every provider unconfigured or open
                 (notes come from the offline template)
    - unhealthy: database unreachable
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text

from clinivoice import __version__
from clinivoice.database import engine
from clinivoice.schemas.note import HealthResponse
from clinivoice.services.generation_service import (
    NoteGenerationPipeline,
    get_generation_pipeline,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    pipeline: NoteGenerationPipeline = Depends(get_generation_pipeline),
) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    providers = pipeline.provider_statuses()
    if overall == "healthy" and "available" not in providers.values():
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        providers=providers,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
