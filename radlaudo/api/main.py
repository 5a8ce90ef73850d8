"""
FastAPI main application for radlaudo.
Provides the streaming report generation endpoint and template reads.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import uvicorn

from ..app.routers.generation import get_orchestrator, router as generation_router
from ..app.routers.templates import router as templates_router
from ..services.llm_service import llm_service
from ..services.storage_service import storage_service
from ..utils.config import settings
from ..utils.logging import get_logger
from ..utils.cache import get_cache_stats

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    timestamp: float
    services: Dict[str, Any]
    cache_stats: Optional[Dict[str, Any]] = None
    version: str = "1.0.0"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup and drain pending logs on shutdown."""
    logger.info("Starting radlaudo API server")

    if storage_service.is_configured():
        try:
            await storage_service.initialize()
        except Exception as e:
            # Retried lazily by the first storage call
            logger.error(f"Storage initialization failed: {e}")
    else:
        logger.warning("Supabase is not configured; using in-memory stores")

    yield

    logger.info("Shutting down radlaudo API server")
    await get_orchestrator().wait_for_pending()


# Create FastAPI app
app = FastAPI(
    title="radlaudo API",
    description="Template-grounded radiology report generation",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.include_router(generation_router)
app.include_router(templates_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and backing services."""
    try:
        llm_health = await llm_service.health_check()
        storage_health = await storage_service.health_check()

        statuses = {llm_health["status"], storage_health["status"]}
        overall = "unhealthy" if "unhealthy" in statuses else (
            "healthy" if statuses == {"healthy"} else "degraded"
        )

        return HealthResponse(
            status=overall,
            timestamp=datetime.now(timezone.utc).timestamp(),
            services={"llm": llm_health, "storage": storage_health},
            cache_stats=get_cache_stats() if settings.enable_caching else None,
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return HealthResponse(
            status="unhealthy",
            timestamp=datetime.now(timezone.utc).timestamp(),
            services={},
        )


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
            "timestamp": _utcnow_iso(),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "status_code": 500,
            "timestamp": _utcnow_iso(),
        },
    )


if __name__ == "__main__":
    uvicorn.run(
        "radlaudo.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
