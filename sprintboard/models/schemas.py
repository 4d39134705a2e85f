"""
Pydantic models for API request/response schemas.

These models define the contract between the FastAPI backend and the
dashboard frontend. The relay models keep the camelCase field names of the
Node proxy so existing clients keep working.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

Row = dict[str, str]


class DashboardConfig(BaseModel):
    """User configuration fed into every aggregation. Immutable per request."""

    model_config = ConfigDict(frozen=True)

    assignee_caps: dict[str, float] = {}
    sprint_days: dict[str, int] = {}
    program_end_date: str | None = None
    project_targets: dict[str, str] = {}


class SprintDateRange(BaseModel):
    """Sprint start/end in MM/DD/YYYY form."""

    start: str
    end: str


class AssigneeStats(BaseModel):
    """Per-assignee counts, story point buckets and capacity usage."""

    epics: int
    stories: int
    bugs: int
    tasks: int
    subtasks: int
    initiatives: int
    total_story_points: float
    completed_story_points: float
    remaining_story_points: float
    awaiting_testing_story_points: float
    awaiting_versioning_story_points: float
    available_story_points: float
    in_progress_story_points: float
    to_do_story_points: float
    sprint_capacity: float
    capacity_used: float
    capacity_remaining: float
    capacity_utilization: float
    allocation_status: str
    done_count: int
    in_progress_count: int
    todo_count: int
    awaiting_testing_count: int
    awaiting_versioning_count: int
    item_count: int


class RiskEntry(BaseModel):
    issue_key: str
    project: str
    assignee: str
    risk_level: str
    reason: str
    days_late: int | None
    status: str
    sp: float
    sprint: str


class RebalanceSuggestion(BaseModel):
    """A proposed move of one issue between assignees."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_assignee: str = Field(alias="from")
    to: str
    sp: float
    summary: str
    project: str
    is_subtask: bool
    eligible_count: int
    allowed_count: int
    eligible_candidates: list[str]
    allowed_candidates: list[str]


class RebalanceRejection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_assignee: str = Field(alias="from")
    sp: float
    reason: str


class WhatIfProjection(BaseModel):
    total_sp: float
    completed_sp: float
    current_capacity: float
    projected_capacity: float
    projected_completion: float


class ProjectProgress(BaseModel):
    project: str
    total_items: int
    done_items: int
    total_sp: float
    completed_sp: float
    percent_sp: float | None
    percent_count: float


class SprintProjectProgress(ProjectProgress):
    project_key: str
    remaining_sp: float


class SprintTimeline(BaseModel):
    start_date: str
    end_date: str
    elapsed_days: int
    total_days: int
    days_remaining: int
    percent_time_elapsed: int
    is_configured: bool


class Milestone(BaseModel):
    project: str
    sprint: str
    target_end: str
    total_sp: float
    completed_sp: float
    percent_complete: int
    days_remaining: int | None
    status: str


class TimelineProject(BaseModel):
    project: str
    sprints: list[str]
    start_date: str
    end_date: str
    total_sp: float
    completed_sp: float
    items: int
    done_items: int
    percent_complete: int
    target_end_date: str
    effective_end_date: str
    days_to_target: int
    status: str


class TimelineAnalytics(BaseModel):
    total: int
    complete: int
    on_track: int
    early: int
    delayed: int
    total_sp: float
    completed_sp: float
    avg_days: float
    insights: list[str]


class DashboardSummary(BaseModel):
    """Headline KPIs for the overview tab."""

    total_sp: float
    completed_sp: float
    awaiting_testing_sp: float
    available_sp: float
    completion_rate: int
    high_risks: int
    overloaded_count: int


class ExportUpload(BaseModel):
    """Raw export text as read by the browser from the uploaded file."""

    filename: str | None = None
    text: str


class ParseResponse(BaseModel):
    rows: list[Row]
    sprint_dates: dict[str, SprintDateRange]
    row_count: int
    columns: list[str]
    sprints: list[str]
    assignees: list[str]


class AnalyzeRequest(ExportUpload):
    """Export plus the current filter selections and optional config."""

    sprint: str = "all"
    assignee: str = "all"
    what_if_multiplier: float = Field(1.0, ge=0)
    config: DashboardConfig | None = None


class DashboardResponse(BaseModel):
    """Every derived dashboard view for one set of inputs."""

    row_count: int
    filtered_count: int
    sprints: list[str]
    assignees: list[str]
    sprint_dates: dict[str, SprintDateRange]
    selected_sprint: str
    selected_assignee: str
    stats: dict[str, AssigneeStats]
    summary: DashboardSummary
    sprint_timeline: SprintTimeline | None
    risks: list[RiskEntry]
    milestones: list[Milestone]
    project_progress: list[ProjectProgress]
    sprint_project_progress: list[SprintProjectProgress]
    timeline: list[TimelineProject]
    timeline_analytics: TimelineAnalytics
    program_end_date: str | None
    status_counts: dict[str, int]
    suggestions: list[RebalanceSuggestion]
    rejections: list[RebalanceRejection]
    what_if: WhatIfProjection


class SuggestionsResponse(BaseModel):
    suggestions: list[RebalanceSuggestion]
    rejections: list[RebalanceRejection]


class PreferencesResponse(BaseModel):
    """The persisted dashboard preferences under their storage keys."""

    model_config = ConfigDict(populate_by_name=True)

    assignee_caps: dict[str, float] = Field(default_factory=dict, alias="assigneeCaps")
    sprint_days: dict[str, int] = Field(default_factory=dict, alias="sprintDaysConfig")
    program_end_date: str | None = Field(None, alias="programEndDate")
    project_targets: dict[str, str] = Field(default_factory=dict, alias="projectTargets")


class PreferenceValue(BaseModel):
    """Value of a single preference key."""

    key: str
    value: Any = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = "1.0.0"


class ConfigResponse(BaseModel):
    """Application configuration exposed to frontend."""

    default_sprint_capacity: float
    rebalance_default_capacity: float
    azdo_configured: bool


class SprintProgressRequest(BaseModel):
    """Body of POST /api/sprint-progress; every field is optional."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    organization_url: str | None = Field(None, alias="organizationUrl")
    org_url: str | None = Field(None, alias="orgUrl")
    personal_access_token: str | None = Field(None, alias="personalAccessToken")
    pat: str | None = None
    api_version: str | None = Field(None, alias="apiVersion")
    project: str | None = None
    project_name: str | None = Field(None, alias="projectName")
    project_filter: str | None = Field(None, alias="projectFilter")
    group_by: str = Field("AreaPath", alias="groupBy")
    completed_states: list[str] = Field(
        default_factory=lambda: ["Done", "Closed", "Resolved", "Completed"],
        alias="completedStates",
    )


class SprintProgressGroup(BaseModel):
    key: str
    itemsCount: int
    completedCount: int
    totalSP: float
    completedSP: float
    percent: float


class SprintProgressResponse(BaseModel):
    groups: list[SprintProgressGroup]


class AzdoConfigResponse(BaseModel):
    """Credential status for the relay; never includes the token."""

    hasCredentials: bool
    orgUrl: str | None
    apiVersion: str
    project: str | None
    source: str
