"""
Liveness and frontend configuration endpoints.

/config tells the dashboard which capacity defaults apply and whether the
Azure DevOps relay has credentials, without exposing them.
"""

from fastapi import APIRouter

from sprintboard.core.config import settings
from sprintboard.models.schemas import ConfigResponse, HealthResponse
from sprintboard.services import azdo_service

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(status="ok")


@router.get("/config", response_model=ConfigResponse)
async def get_config() -> ConfigResponse:
    """Capacity defaults and relay availability for the dashboard."""
    cfg = azdo_service.resolve_azdo_config(settings)
    return ConfigResponse(
        default_sprint_capacity=settings.default_sprint_capacity,
        rebalance_default_capacity=settings.rebalance_default_capacity,
        azdo_configured=bool(cfg["org_url"] and cfg["pat"]),
    )
