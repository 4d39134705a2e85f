"""
Dashboard endpoints.

The browser reads the uploaded export and posts its text here together with
the current filter selections. Every view is recomputed from scratch on each
call; nothing about the upload is stored server side.
"""

import logging

from fastapi import APIRouter, HTTPException

from sprintboard.core.config import settings
from sprintboard.models.schemas import (
    AnalyzeRequest,
    DashboardConfig,
    DashboardResponse,
    ExportUpload,
    ParseResponse,
    SuggestionsResponse,
)
from sprintboard.services import (
    aggregation_service,
    allocation_service,
    parser_service,
    preferences_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def ensure_supported_upload(upload: ExportUpload) -> None:
    """Reject uploads whose name is not a .csv, .tsv or .txt file."""
    if upload.filename and not parser_service.is_supported_filename(upload.filename):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{upload.filename}'. Upload a .csv, .tsv or .txt export.",
        )


def resolve_config(config: DashboardConfig | None) -> DashboardConfig:
    """Use the request's config, or the persisted preferences when absent."""
    return config if config is not None else preferences_store.load_dashboard_config()


@router.post("/parse", response_model=ParseResponse)
async def parse_export(upload: ExportUpload) -> ParseResponse:
    """
    Parse an export and return its rows and sprint date ranges.

    Unrecognised content yields an empty dataset rather than an error.
    """
    ensure_supported_upload(upload)
    parsed = parser_service.parse_export(upload.text)
    rows = parsed["rows"]
    logger.info("Parsed %s: %d rows", upload.filename or "<inline>", len(rows))

    return ParseResponse(
        rows=rows,
        sprint_dates=parsed["sprint_dates"],
        row_count=len(rows),
        columns=list(rows[0].keys()) if rows else [],
        sprints=aggregation_service.list_sprints(rows),
        assignees=aggregation_service.list_assignees(rows),
    )


@router.post("/analyze", response_model=DashboardResponse)
async def analyze_export(request: AnalyzeRequest) -> DashboardResponse:
    """
    Compute every dashboard view for an export and filter selection.

    Args:
        request: Export text, sprint/assignee selection, what-if multiplier
            and an optional config overriding the stored preferences
    """
    ensure_supported_upload(request)
    parsed = parser_service.parse_export(request.text)
    dashboard = aggregation_service.build_dashboard(
        parsed["rows"],
        parsed["sprint_dates"],
        resolve_config(request.config),
        sprint=request.sprint,
        assignee=request.assignee,
        what_if_multiplier=request.what_if_multiplier,
        default_capacity=settings.default_sprint_capacity,
        rebalance_default_capacity=settings.rebalance_default_capacity,
    )
    return DashboardResponse(**dashboard)


@router.post("/suggestions", response_model=SuggestionsResponse)
async def rebalance_suggestions(request: AnalyzeRequest) -> SuggestionsResponse:
    """Rebalancing suggestions for the selected sprint and assignee."""
    ensure_supported_upload(request)
    config = resolve_config(request.config)
    rows = aggregation_service.filter_rows(
        parser_service.parse(request.text), request.sprint, request.assignee
    )
    stats = aggregation_service.compute_assignee_stats(
        rows, config.assignee_caps, settings.default_sprint_capacity
    )
    result = allocation_service.compute_suggestions_detailed(
        rows, stats, settings.rebalance_default_capacity
    )
    return SuggestionsResponse(**result)
