"""
Monitoring API routes
"""
from fastapi import APIRouter, Depends
import logging

from ..models import HealthCheckResponse
from ..dependencies import get_runtime
from ... import __version__
from ...models.execution import ExecutionStatus, utcnow
from ...runtime import Runtime


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    runtime: Runtime = Depends(get_runtime)
) -> HealthCheckResponse:
    checks = {}

    try:
        await runtime.execution_store.list_by_status(ExecutionStatus.RUNNING, limit=1)
        checks["database"] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = False

    checks["scheduler"] = runtime.scheduler.is_running

    return HealthCheckResponse(
        status="healthy" if all(checks.values()) else "unhealthy",
        version=__version__,
        timestamp=utcnow(),
        checks=checks
    )
