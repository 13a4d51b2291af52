"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from talkpipe import __version__, validate_settings
from talkpipe.api.routes import router
from talkpipe.orchestrator.pipeline import MachineOrchestrator
from talkpipe.services.machine_client import close_machine_client, get_machine_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Validate settings
        - Create the per-process orchestrator

    Shutdown:
        - Abort any run in progress
        - Close the collaborator HTTP client
    """
    # Startup
    logger.info("Starting Talkpipe API...")
    validate_settings()
    app.state.orchestrator = MachineOrchestrator(await get_machine_client())
    logger.info("API startup complete")

    yield

    # Shutdown
    logger.info("Shutting down Talkpipe API...")
    app.state.orchestrator.cancel()
    await close_machine_client()
    logger.info("API shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Talkpipe API",
    version=__version__,
    lifespan=lifespan,
)

# CORS for Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )
