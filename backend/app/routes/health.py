# backend/app/routes/health.py
"""
Health check endpoints for the application.
"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..api.dependencies import get_cache_service_dep, get_db
from ..core.constants import API_VERSION
from ..services.cache_service import CacheService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class HealthCheckResponse(BaseModel):
    status: str
    version: str
    database: bool
    cache_backend: str
    timestamp: datetime


@router.get("/health", response_model=HealthCheckResponse)
def health_check(
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache_service_dep),
) -> HealthCheckResponse:
    """Database connectivity plus the cache backend currently in use."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_ok = False

    return HealthCheckResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        database=db_ok,
        cache_backend="memory" if cache.is_memory_backed else "redis",
        timestamp=datetime.now(timezone.utc),
    )
