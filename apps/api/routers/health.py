"""
Health check endpoints.
"""

from typing import Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import async_session_maker, engine
from services.settings_store import load_external_config

router = APIRouter()


async def _database_state() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as exc:
        return f"down: {exc}"


async def _redis_state() -> str:
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
        return "up"
    except Exception as exc:
        return f"down: {exc}"
    finally:
        await client.aclose()


async def _provider_state() -> str:
    async with async_session_maker() as db:
        config = await load_external_config(db)
    return "configured" if config and config.is_complete else "missing"


@router.get("/health")
async def health_check():
    """
    Component status. Redis only backs rate limiting, so an outage there
    is reported without degrading the overall status.
    """
    components: Dict[str, str] = {
        "api": "up",
        "database": await _database_state(),
        "redis": await _redis_state(),
    }
    if components["database"] == "up":
        components["external_api"] = await _provider_state()
    else:
        components["external_api"] = "unknown"

    components["status"] = "healthy" if components["database"] == "up" else "degraded"
    return components


@router.get("/health/ready")
async def readiness_check():
    """Ready once the database answers."""
    database = await _database_state()
    if database != "up":
        return JSONResponse(status_code=503, content={"ready": False, "database": database})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
