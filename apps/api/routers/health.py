"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from config import settings
from database import get_db

router = APIRouter()


async def _database_status() -> str:
    try:
        from database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "alerts": "webhook" if settings.ALERT_WEBHOOK_URL else "log",
        "queue": "rq" if settings.USE_AUDIT_QUEUE else "background_tasks",
    }
    
    health_status["database"] = await _database_status()
    if health_status["database"] != "up":
        health_status["status"] = "degraded"
    
    # Check Redis connection
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        # Redis only matters when audits go through the queue.
        if settings.USE_AUDIT_QUEUE:
            health_status["status"] = "degraded"
    
    return health_status


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Kubernetes-style readiness probe."""
    missing = []
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        missing.append("database")
    if settings.ALERT_WEBHOOK_URL and len((settings.ALERT_WEBHOOK_SECRET or "").strip()) < 16:
        missing.append("ALERT_WEBHOOK_SECRET")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
