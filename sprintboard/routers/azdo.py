"""
Azure DevOps relay endpoints.

Thin pass-through to the remote work item API. Error bodies keep the
{error, ...} shape of the Node proxy they replace rather than FastAPI's {detail}.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from sprintboard.core.config import settings
from sprintboard.models.schemas import (
    AzdoConfigResponse,
    SprintProgressRequest,
    SprintProgressResponse,
)
from sprintboard.services import azdo_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["azdo"])


@router.post("/sprint-progress", response_model=SprintProgressResponse)
async def sprint_progress(body: SprintProgressRequest | None = None):
    """
    Aggregate current-iteration work items per area path or project.

    Credentials come from the body, then the environment, then
    azdo.config.json. Missing credentials return 400 describing what was
    checked; upstream failures return 500 with the upstream status and body.
    """
    body = body or SprintProgressRequest()
    cfg = azdo_service.credentials_from_request(body) or azdo_service.resolve_azdo_config(settings)
    api_version = cfg.get("api_version") or settings.azdo_api_version

    if not cfg.get("org_url") or not cfg.get("pat"):
        return JSONResponse(
            status_code=400,
            content={
                "error": azdo_service.MISSING_CREDENTIALS_MESSAGE,
                "config": azdo_service.public_config(cfg, settings.azdo_api_version),
            },
        )

    project = body.project or body.project_filter or body.project_name or cfg.get("project")
    try:
        groups = await azdo_service.fetch_sprint_progress(
            {**cfg, "api_version": api_version},
            project,
            group_by=body.group_by,
            completed_states=body.completed_states,
            config=settings,
        )
    except azdo_service.AzdoUpstreamError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except Exception as exc:
        logger.exception("Sprint progress relay failed")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return SprintProgressResponse(groups=groups)


@router.get("/azdo-config", response_model=AzdoConfigResponse)
async def azdo_config():
    """Report whether relay credentials are available, without the token."""
    try:
        cfg = azdo_service.resolve_azdo_config(settings)
    except Exception as exc:
        logger.error("azdo-config error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to read config"})

    return AzdoConfigResponse(
        hasCredentials=bool(cfg.get("org_url") and cfg.get("pat")),
        **azdo_service.public_config(cfg, settings.azdo_api_version),
    )
