"""
Health check and monitoring endpoints.

Provides detailed health status for the database and the reset record store.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text

from app.core.database import get_db
from app.core.deps import get_reset_store
from app.crud.password_reset import ResetRecordStore

router = APIRouter(tags=["Health"])
logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    """
    Basic health check endpoint.

    Returns 200 OK if the service is running.
    Use this for simple uptime monitoring and load balancer health checks.
    """
    return {
        "status": "healthy",
        "timestamp": _timestamp()
    }


@router.get("/health/detailed", status_code=status.HTTP_200_OK)
def detailed_health_check(
    db: Session = Depends(get_db),
    store: ResetRecordStore = Depends(get_reset_store),
):
    """
    Detailed health check with dependency status.

    Checks:
    - Database connectivity
    - Reset record store backend

    Returns 200 if all systems operational, 503 otherwise, with detailed
    status for each component.
    """
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": _timestamp(),
        "checks": {}
    }

    # Check database connectivity
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful"
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database connection failed"
        }

    # Check the reset store backend
    try:
        store.ping()
        health_status["checks"]["reset_store"] = {
            "status": "healthy",
            "backend": store.backend_name,
        }
    except Exception as e:
        logger.error(f"Reset store health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["reset_store"] = {
            "status": "unhealthy",
            "backend": store.backend_name,
        }

    if health_status["status"] != "healthy":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health_status)
    return health_status
