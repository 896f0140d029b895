"""
FastAPI Application

Main entry point for the training plan generation API. The app lifespan
opens the database and the job registry and closes them on shutdown. Jobs are
executed by a separate Celery worker.
"""

from contextlib import asynccontextmanager
from typing import Dict, Optional

import redis
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routes import plans
from src.config import Settings, get_settings
from src.errors import PlanValidationError, QueueError
from src.logging_config import configure_logging
from src.service import planner_runtime


def create_app(
    settings: Optional[Settings] = None,
    redis_client: Optional[redis.Redis] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use (default: environment settings)
        redis_client: Job registry client (default: one for settings.redis_url)
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        with planner_runtime(settings, redis_client=redis_client) as runtime:
            app.state.runtime = runtime
            yield

    app = FastAPI(
        title="Training Plan Generation API",
        description="Asynchronous generation of periodized running plans",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS configuration - allow frontend to access API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(plans.router, prefix="/api", tags=["Training Plans"])

    @app.get("/")
    async def root() -> Dict[str, str]:
        """Root endpoint - API information."""
        return {
            "name": "Training Plan Generation API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "training-planner-api"}

    @app.exception_handler(PlanValidationError)
    async def validation_exception_handler(request, exc: PlanValidationError):
        """Rejected plan requests."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation Error", "message": str(exc), "details": exc.details},
        )

    @app.exception_handler(QueueError)
    async def queue_exception_handler(request, exc: QueueError):
        """Generation job could not be enqueued."""
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Queue Error", "message": "Failed to enqueue generation job"},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc: HTTPException):
        """Handle HTTP exceptions with consistent error format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "message": str(exc.detail)},
        )

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
