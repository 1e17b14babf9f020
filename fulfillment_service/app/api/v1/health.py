from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter
from sqlalchemy import text

from ...core.database import database_manager
from ...core.events import health_check_events
from ...core.settings import get_settings

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint for the fulfillment service."""
    settings = get_settings()

    database_ok = True
    try:
        async with database_manager.async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        database_ok = False

    events_ok = await health_check_events()

    return {
        "status": "healthy" if database_ok else "unhealthy",
        "service": settings.SERVICE_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "up" if database_ok else "down",
            "events": "up" if events_ok else ("disabled" if not settings.KAFKA_ENABLED else "degraded"),
        },
    }
