"""
FastAPI application
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from .. import __version__
from ..config import Settings
from ..runtime import build_runtime
from .dependencies import app_state, get_app_state
from .middleware import RequestLoggingMiddleware
from .routers import workflows, triggers, executions, scheduler, monitoring


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup, tear it down on shutdown"""
    logger.info("Starting CRM workflow API...")

    settings = Settings.from_env()
    runtime = await build_runtime(settings)
    await runtime.scheduler.start()

    app_state.update({
        "settings": settings,
        "runtime": runtime
    })

    logger.info("CRM workflow API started")

    yield

    logger.info("Shutting down CRM workflow API...")
    app_state.clear()
    await runtime.close()
    logger.info("CRM workflow API shut down")


app = FastAPI(
    title="CRM Workflow API",
    description="Runs CRM automation workflows: start, queue, resume and cancel executions",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(workflows.router, prefix="/api/v1/workflows", tags=["workflows"])
app.include_router(triggers.router, prefix="/api/v1/triggers", tags=["triggers"])
app.include_router(executions.router, prefix="/api/v1/executions", tags=["executions"])
app.include_router(scheduler.router, prefix="/api/v1/scheduler", tags=["scheduler"])
app.include_router(monitoring.router, prefix="/api/v1/monitoring", tags=["monitoring"])


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": getattr(request.state, "request_id", None)
        }
    )


@app.get("/", tags=["root"])
async def root():
    runtime = get_app_state().get("runtime")
    return {
        "name": "CRM Workflow API",
        "version": __version__,
        "status": "running",
        "docs": "/docs",
        "health": "/api/v1/monitoring/health",
        "scheduler_running": bool(runtime and runtime.scheduler.is_running)
    }
