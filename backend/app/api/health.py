"""Health check endpoint — database and provider connectivity.

GET /health           — DB check + provider configuration (cheap, no provider calls)
GET /health/providers — live probe of every configured chat provider (10s timeout)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.llm.dispatcher import AiDispatcher
from app.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

VERSION = "0.1.0"

_registry: ProviderRegistry | None = None
_dispatcher: AiDispatcher | None = None


def set_dependencies(registry: ProviderRegistry, dispatcher: AiDispatcher) -> None:
    global _registry, _dispatcher
    _registry = registry
    _dispatcher = dispatcher


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    dependencies: dict[str, str]  # Simplified view for dashboards
    timestamp: datetime


class ProviderHealth(BaseModel):
    providers: dict[str, dict]
    healthy: int
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. Database
    try:
        from app.db.database import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        checks["database"] = {"status": "ok", "detail": engine.dialect.name}
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = {"status": "error", "detail": "unreachable"}
        overall_healthy = False

    # 2. Providers (configuration only)
    if _registry is None:
        checks["providers"] = {"status": "warning", "detail": "registry not initialized"}
        has_warning = True
    else:
        configured = _registry.configured_providers()
        if configured:
            checks["providers"] = {"status": "ok", "detail": ", ".join(configured)}
        else:
            checks["providers"] = {"status": "warning", "detail": "no provider API key set"}
            has_warning = True

    dependencies = {name: check["status"] for name, check in checks.items()}

    if overall_healthy:
        status = "degraded" if has_warning else "healthy"
    else:
        status = "unhealthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        dependencies=dependencies,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/health/providers", response_model=ProviderHealth)
async def provider_health() -> ProviderHealth:
    """Probe each chat provider with a tiny completion."""
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Dispatcher not initialized")
    results = await _dispatcher.health_check()
    return ProviderHealth(
        providers=results,
        healthy=sum(1 for r in results.values() if r.get("status") == "healthy"),
        timestamp=datetime.now(timezone.utc),
    )
