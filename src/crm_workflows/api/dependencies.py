"""
FastAPI dependency injection
"""
from fastapi import HTTPException, status
from typing import Dict, Any
import logging

from ..runtime import Runtime
from ..core.coordinator import ExecutionCoordinator
from ..core.scheduler import ContinuationScheduler
from ..core.trigger_queue import TriggerQueueProcessor


logger = logging.getLogger(__name__)


# Populated by the application lifespan
app_state: Dict[str, Any] = {}


def get_app_state() -> Dict[str, Any]:
    return app_state


def get_runtime() -> Runtime:
    runtime = app_state.get("runtime")

    if not runtime:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": "Workflow runtime not initialized"
            }
        )

    return runtime


def get_coordinator() -> ExecutionCoordinator:
    return get_runtime().coordinator


def get_scheduler() -> ContinuationScheduler:
    return get_runtime().scheduler


def get_trigger_queue() -> TriggerQueueProcessor:
    return get_runtime().trigger_queue
