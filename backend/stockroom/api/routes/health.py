"""
Health check endpoint for load balancers.
"""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/status")
async def health_check(request: Request):
    """Liveness check. Also reports how many tenant stores are routable."""
    registry = getattr(request.app.state, "data_source_registry", None)
    return {
        "status": "ok",
        "tenantStores": len(registry) if registry is not None else 0,
    }
