"""
Health Check Endpoint

GET /api/v1/health     - shallow, no backend access
GET /api/v1/health/deep - storage, persistence and enrichment queue status
"""
import asyncio
import logging
import time

from fastapi import APIRouter

from app.core.config import settings
from app.models.schemas import ComponentHealth, ComponentStatus, HealthResponse
from app.services.container import get_container
from app.services.supabase_storage import SupabaseStorageGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

HEALTH_CHECK_TIMEOUT = 5


async def check_api_health() -> ComponentHealth:
    """Check API component health"""
    start = time.time()
    latency = (time.time() - start) * 1000
    return ComponentHealth(
        name="API",
        status=ComponentStatus.HEALTHY,
        latency_ms=round(latency, 2),
        message="API is responding",
    )


async def check_storage_health() -> ComponentHealth:
    start = time.time()
    container = get_container()
    backend = container.settings.storage_backend

    try:
        storage = container.storage
        if isinstance(storage, SupabaseStorageGateway):
            healthy = await storage.check_health(container.settings.supabase_storage_bucket)
        else:
            healthy = True

        latency = (time.time() - start) * 1000
        return ComponentHealth(
            name="Storage",
            status=ComponentStatus.HEALTHY if healthy else ComponentStatus.UNAVAILABLE,
            latency_ms=round(latency, 2),
            message=f"{backend} storage {'connected' if healthy else 'unavailable'}",
        )
    except Exception as e:
        latency = (time.time() - start) * 1000
        logger.warning(f"Storage health check failed: {e}")
        return ComponentHealth(
            name="Storage",
            status=ComponentStatus.UNAVAILABLE,
            latency_ms=round(latency, 2),
            message=str(e),
        )


async def check_persistence_health() -> ComponentHealth:
    start = time.time()
    container = get_container()
    backend = container.settings.persistence_backend

    try:
        await container.repository.get_size_totals()
        latency = (time.time() - start) * 1000
        return ComponentHealth(
            name="Persistence",
            status=ComponentStatus.HEALTHY,
            latency_ms=round(latency, 2),
            message=f"{backend} connected",
        )
    except Exception as e:
        latency = (time.time() - start) * 1000
        logger.warning(f"Persistence health check failed: {e}")
        return ComponentHealth(
            name="Persistence",
            status=ComponentStatus.UNAVAILABLE,
            latency_ms=round(latency, 2),
            message=str(e),
        )


async def check_queue_health() -> ComponentHealth:
    queue = get_container().queue
    stats = queue.get_stats()
    if not queue.running:
        status = ComponentStatus.UNAVAILABLE
        message = "Enrichment workers not running"
    elif stats["deferred"] > 0:
        status = ComponentStatus.DEGRADED
        message = f"Queue full, {stats['deferred']} job(s) waiting for a slot"
    else:
        status = ComponentStatus.HEALTHY
        message = f"{stats['workers']} workers, {stats['queued']} queued, {stats['in_flight']} in flight"
    return ComponentHealth(name="Enrichment Queue", status=status, message=message)


def determine_overall_status(components: dict[str, ComponentHealth]) -> str:
    """
    Determine overall system status based on component health.

    - healthy: All components are healthy
    - degraded: Some components are degraded or unavailable
    - unhealthy: API or persistence is unavailable
    """
    statuses = [c.status for c in components.values()]

    if all(s == ComponentStatus.HEALTHY for s in statuses):
        return "healthy"
    for critical in ("api", "persistence"):
        component = components.get(critical)
        if component is not None and component.status == ComponentStatus.UNAVAILABLE:
            return "unhealthy"
    return "degraded"


async def check_with_timeout(
    check_func,
    component_name: str,
    timeout_seconds: float = HEALTH_CHECK_TIMEOUT
) -> ComponentHealth:
    """
    Execute health check with timeout.

    Returns:
        ComponentHealth from check_func or UNAVAILABLE on timeout
    """
    try:
        return await asyncio.wait_for(check_func(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Health check timeout for {component_name} (>{timeout_seconds}s)")
        return ComponentHealth(
            name=component_name,
            status=ComponentStatus.UNAVAILABLE,
            latency_ms=timeout_seconds * 1000,
            message=f"Health check timeout (>{timeout_seconds}s)",
        )


@router.get("", summary="Shallow Health Check")
async def health_check_shallow():
    """Liveness plus queue counters; does not touch storage or the database."""
    container = get_container()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "storage_backend": container.settings.storage_backend,
        "persistence_backend": container.settings.persistence_backend,
        "enrichment_queue": container.queue.get_stats(),
    }


@router.get("/deep", response_model=HealthResponse, summary="Deep Health Check")
async def health_check_deep() -> HealthResponse:
    """Check every backend the pipeline depends on, plus the enrichment queue."""
    components = {
        "api": await check_with_timeout(check_api_health, "API"),
        "storage": await check_with_timeout(check_storage_health, "Storage"),
        "persistence": await check_with_timeout(check_persistence_health, "Persistence"),
        "enrichment_queue": await check_with_timeout(check_queue_health, "Enrichment Queue"),
    }

    overall_status = determine_overall_status(components)

    response = HealthResponse(
        status=overall_status,
        version=settings.app_version,
        environment=settings.environment,
        components=components,
        enrichment_queue=get_container().queue.get_stats(),
    )

    logger.info(f"Deep health check: {overall_status}")

    return response
