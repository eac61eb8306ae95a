"""
Health check endpoints with dependency monitoring

Provides two endpoints:
- GET /api/v1/health - Basic health check
- GET /api/v1/health/dependencies - Supabase and Evolution API status
"""
import time
from datetime import datetime
from typing import Dict, Optional
from fastapi import APIRouter, status
from pydantic import BaseModel, Field
import httpx
import asyncio

from crm_bridge import __version__
from crm_bridge.config import get_settings
from crm_bridge.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/health", tags=["health"])

APP_START_TIME = time.time()

# Cache for dependency check results (30 seconds TTL)
_dependency_cache: Optional["DependencyHealth"] = None
_cache_timestamp: float = 0.0
CACHE_TTL_SECONDS = 30.0

CHECK_TIMEOUT_SECONDS = 5.0


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthResponse(BaseModel):
    """Basic health check response"""
    status: str = Field(..., description="Overall status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., description="Application uptime in seconds")


class DependencyStatus(BaseModel):
    """Status of a single dependency"""
    name: str = Field(..., description="Dependency name")
    status: str = Field(..., description="Status: healthy, degraded, unhealthy")
    latency_ms: Optional[float] = Field(None, description="Response latency in milliseconds")
    error_message: Optional[str] = Field(None, description="Error message if unhealthy")


class DependencyHealth(BaseModel):
    """Dependency health check response"""
    overall_status: str = Field(..., description="Overall status: healthy, degraded, unhealthy")
    dependencies: Dict[str, DependencyStatus] = Field(..., description="Individual dependency statuses")
    checked_at: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")


# ============================================================================
# Dependency Check Functions
# ============================================================================

async def check_supabase() -> DependencyStatus:
    """Check Supabase connectivity with a one-row query on tickets"""
    if not settings.supabase_url or not settings.SUPABASE_KEY:
        return DependencyStatus(
            name="supabase",
            status="unhealthy",
            error_message="Supabase credentials not configured"
        )

    try:
        from crm_bridge.services.supabase_client import get_supabase_client

        start = time.time()
        client = get_supabase_client()
        await asyncio.wait_for(
            asyncio.to_thread(
                lambda: client.table("tickets").select("id").limit(1).execute()
            ),
            timeout=CHECK_TIMEOUT_SECONDS
        )
        latency = (time.time() - start) * 1000

        return DependencyStatus(name="supabase", status="healthy", latency_ms=round(latency, 2))

    except asyncio.TimeoutError:
        logger.error("Supabase health check timed out")
        return DependencyStatus(
            name="supabase",
            status="unhealthy",
            error_message=f"Request timed out after {CHECK_TIMEOUT_SECONDS:.0f} seconds"
        )
    except Exception as e:
        logger.error(f"Supabase health check failed: {e}")
        return DependencyStatus(name="supabase", status="unhealthy", error_message=str(e))


async def check_evolution_api() -> DependencyStatus:
    """Check Evolution API connectivity and API key"""
    if not settings.evolution_api_key:
        return DependencyStatus(
            name="evolution_api",
            status="degraded",
            error_message="API key not configured"
        )

    try:
        start = time.time()
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT_SECONDS) as client:
            response = await client.get(
                f"{settings.EVOLUTION_BASE_URL}/instance/fetchInstances",
                headers={"apikey": settings.evolution_api_key}
            )
            response.raise_for_status()
        latency = (time.time() - start) * 1000

        return DependencyStatus(name="evolution_api", status="healthy", latency_ms=round(latency, 2))

    except httpx.TimeoutException:
        logger.error("Evolution API health check timed out")
        return DependencyStatus(
            name="evolution_api",
            status="unhealthy",
            error_message=f"Request timed out after {CHECK_TIMEOUT_SECONDS:.0f} seconds"
        )
    except httpx.HTTPStatusError as e:
        logger.error(f"Evolution API health check failed: {e}")
        return DependencyStatus(
            name="evolution_api",
            status="unhealthy",
            error_message=f"HTTP {e.response.status_code}: {str(e)}"
        )
    except Exception as e:
        logger.error(f"Evolution API health check failed: {e}")
        return DependencyStatus(name="evolution_api", status="unhealthy", error_message=str(e))


async def check_all_dependencies() -> Dict[str, DependencyStatus]:
    """Check all external dependencies in parallel"""
    dep_names = ["supabase", "evolution_api"]
    results = await asyncio.gather(
        check_supabase(),
        check_evolution_api(),
        return_exceptions=True
    )

    dependencies = {}
    for name, result in zip(dep_names, results):
        if isinstance(result, Exception):
            logger.error(f"Unexpected error checking {name}: {result}")
            dependencies[name] = DependencyStatus(
                name=name,
                status="unhealthy",
                error_message=f"Unexpected error: {str(result)}"
            )
        else:
            dependencies[name] = result

    return dependencies


def determine_overall_status(dependencies: Dict[str, DependencyStatus]) -> str:
    """
    Determine overall system status based on dependency health

    Rules:
    - Supabase unhealthy → "unhealthy" (no ticket can be stored)
    - Any other dependency degraded/unhealthy → "degraded"
    - All healthy → "healthy"
    """
    critical_services = ["supabase"]

    for service in critical_services:
        if service in dependencies and dependencies[service].status == "unhealthy":
            return "unhealthy"

    if any(dep.status in ["degraded", "unhealthy"] for dep in dependencies.values()):
        return "degraded"

    return "healthy"


# ============================================================================
# API Endpoints
# ============================================================================

@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check"
)
async def basic_health_check() -> HealthResponse:
    """Always 200; does not touch external dependencies"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=__version__,
        uptime_seconds=round(time.time() - APP_START_TIME, 2)
    )


@router.get(
    "/dependencies",
    response_model=DependencyHealth,
    status_code=status.HTTP_200_OK,
    summary="Dependency health check"
)
async def dependency_health_check() -> DependencyHealth:
    """
    Check Supabase and the Evolution API

    Results are cached for 30 seconds. Always returns 200 with details.
    """
    global _dependency_cache, _cache_timestamp

    current_time = time.time()
    if _dependency_cache and (current_time - _cache_timestamp) < CACHE_TTL_SECONDS:
        logger.debug("Returning cached dependency health check results")
        return _dependency_cache

    logger.info("Performing dependency health checks")
    dependencies = await check_all_dependencies()

    response = DependencyHealth(
        overall_status=determine_overall_status(dependencies),
        dependencies=dependencies,
        checked_at=datetime.utcnow()
    )

    _dependency_cache = response
    _cache_timestamp = current_time

    unhealthy_deps = [name for name, dep in dependencies.items() if dep.status == "unhealthy"]
    if unhealthy_deps:
        logger.warning(f"Unhealthy dependencies: {', '.join(unhealthy_deps)}")

    return response
