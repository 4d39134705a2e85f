"""
Azure DevOps relay service.

Forwards one sprint-progress query to the Azure DevOps work item API with
resolved credentials: a WIQL query for the current iteration, then batched
work item fetches, aggregated per area path or team project.

Credentials are resolved in priority order:
1. Request body (organizationUrl/orgUrl + personalAccessToken/pat)
2. Environment variables (AZDO_ORG_URL, AZDO_PAT, ... via settings)
3. azdo.config.json (AZDO_CONFIG_PATH, project root, cwd, cwd/server)

The personal access token is never logged or returned to callers.
"""

import base64
import json
import logging
from pathlib import Path
from urllib.parse import quote

import httpx

from sprintboard.core.config import Settings, settings as default_settings
from sprintboard.models.schemas import SprintProgressRequest

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "azdo.config.json"
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

CURRENT_ITERATION_WIQL = (
    "SELECT [System.Id] FROM WorkItems WHERE [System.IterationPath] = @CurrentIteration"
)

WORK_ITEM_FIELDS = [
    "System.Id",
    "System.Title",
    "System.State",
    "System.AreaPath",
    "System.TeamProject",
    "Microsoft.VSTS.Scheduling.StoryPoints",
]

MISSING_CREDENTIALS_MESSAGE = (
    "Missing organizationUrl or personalAccessToken. Set env AZDO_ORG_URL and AZDO_PAT, "
    f"create {CONFIG_FILENAME} at project root, or POST "
    '{ "organizationUrl": "https://dev.azure.com/yourOrg", "personalAccessToken": "<pat>" } '
    "to this endpoint for local testing."
)


class AzdoUpstreamError(Exception):
    """An Azure DevOps call returned a non-success status."""

    def __init__(self, message: str, status_code: int, body: str):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def config_file_candidates(config: Settings) -> list[Path]:
    """Locations searched for azdo.config.json, in order."""
    candidates = []
    if config.azdo_config_path:
        candidates.append(Path(config.azdo_config_path))
    candidates.extend([
        PROJECT_ROOT / CONFIG_FILENAME,
        Path.cwd() / CONFIG_FILENAME,
        Path.cwd() / "server" / CONFIG_FILENAME,
    ])
    return candidates


def load_config_from_file(candidates: list[Path], default_api_version: str) -> dict | None:
    """Read the first existing config file; unreadable files are skipped."""
    for path in candidates:
        if not path.is_file():
            continue
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read AZDO config from %s: %s", path, exc)
            continue

        logger.info("Loaded AZDO config from %s", path)
        return {
            "org_url": data.get("organizationUrl") or data.get("orgUrl")
            or data.get("AZDO_ORG_URL") or data.get("VITE_AZDO_ORG_URL"),
            "pat": data.get("personalAccessToken") or data.get("pat")
            or data.get("AZDO_PAT") or data.get("VITE_AZDO_PAT"),
            "api_version": data.get("apiVersion") or data.get("AZDO_API_VERSION") or default_api_version,
            "project": data.get("project") or data.get("projectName")
            or data.get("projectKey") or data.get("projectFilter"),
        }

    logger.info("No %s found. Checked: %s", CONFIG_FILENAME, ", ".join(str(p) for p in candidates))
    return None


def resolve_azdo_config(config: Settings | None = None) -> dict:
    """
    Resolve relay credentials from the environment, then the config file.

    Returns org_url, pat, api_version, project and source, where source is
    "env", "file", "env-partial", "file-partial" or "none".
    """
    config = config or default_settings
    from_env = {
        "org_url": config.azdo_org_url,
        "pat": config.azdo_pat.get_secret_value() if config.azdo_pat else None,
        "api_version": config.azdo_api_version,
        "project": config.azdo_project,
    }
    if from_env["org_url"] and from_env["pat"]:
        logger.debug("Using AZDO config from environment variables")
        return {**from_env, "source": "env"}

    from_file = load_config_from_file(config_file_candidates(config), config.azdo_api_version)
    if from_file and from_file["org_url"] and from_file["pat"]:
        return {**from_file, "source": "file"}

    logger.warning(
        "Missing AZDO credentials. Set AZDO_ORG_URL and AZDO_PAT env vars or create %s",
        CONFIG_FILENAME,
    )
    file_values = from_file or {}
    if from_env["org_url"] or from_env["pat"]:
        source = "env-partial"
    elif file_values.get("org_url") or file_values.get("pat"):
        source = "file-partial"
    else:
        source = "none"

    return {
        "org_url": from_env["org_url"] or file_values.get("org_url"),
        "pat": from_env["pat"] or file_values.get("pat"),
        "api_version": from_env["api_version"] or file_values.get("api_version"),
        "project": from_env["project"] or file_values.get("project"),
        "source": source,
    }


def credentials_from_request(body: SprintProgressRequest) -> dict | None:
    """Credentials supplied in the request body, if any were given."""
    org_url = body.organization_url or body.org_url
    pat = body.personal_access_token or body.pat
    if not (org_url or pat):
        return None
    return {
        "org_url": org_url,
        "pat": pat,
        "api_version": body.api_version,
        "project": body.project or body.project_name or body.project_filter,
        "source": "body",
    }


def public_config(cfg: dict, default_api_version: str) -> dict:
    """The resolved config without the token, safe to return to clients."""
    return {
        "orgUrl": cfg.get("org_url"),
        "apiVersion": cfg.get("api_version") or default_api_version,
        "project": cfg.get("project"),
        "source": cfg.get("source") or "none",
    }


def make_auth(pat: str) -> str:
    """Basic auth header value for a personal access token."""
    token = base64.b64encode(f":{pat}".encode()).decode("ascii")
    return f"Basic {token}"


def wiql_url(org_url: str, project: str | None, api_version: str) -> str:
    """Project-scoped WIQL endpoint (org level when no project is known)."""
    base = org_url.rstrip("/")
    if project:
        return f"{base}/{quote(project, safe='')}/_apis/wit/wiql?api-version={api_version}"
    return f"{base}/_apis/wit/wiql?api-version={api_version}"


def work_items_url(org_url: str, ids: list[int], api_version: str) -> str:
    base = org_url.rstrip("/")
    return (
        f"{base}/_apis/wit/workitems?ids={','.join(str(i) for i in ids)}"
        f"&fields={','.join(WORK_ITEM_FIELDS)}&api-version={api_version}"
    )


def _story_points(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def aggregate_groups(work_items: list[dict], group_by: str, completed_states: list[str]) -> list[dict]:
    """
    Sum items and story points per area path (or team project).

    Percent is completed over total story points, capped at 100, and 0 when
    nothing is estimated. Groups are sorted by total story points, largest
    first.
    """
    completed = {str(s).lower() for s in completed_states or []}
    groups: dict[str, dict] = {}

    for item in work_items:
        fields = item.get("fields") or {}
        if group_by == "Project":
            key = fields.get("System.TeamProject") or "Unknown"
        else:
            key = fields.get("System.AreaPath") or "Unknown"

        group = groups.setdefault(
            key,
            {"key": key, "itemsCount": 0, "completedCount": 0, "totalSP": 0.0, "completedSP": 0.0},
        )
        sp = _story_points(fields.get("Microsoft.VSTS.Scheduling.StoryPoints"))
        group["itemsCount"] += 1
        group["totalSP"] += sp
        if str(fields.get("System.State") or "").lower() in completed:
            group["completedSP"] += sp
            group["completedCount"] += 1

    result = []
    for group in groups.values():
        total = group["totalSP"]
        percent = min(100, group["completedSP"] / total * 100) if total > 0 else 0
        result.append({**group, "percent": percent})

    result.sort(key=lambda g: g["totalSP"], reverse=True)
    return result


async def fetch_sprint_progress(
    cfg: dict,
    project: str | None,
    group_by: str = "AreaPath",
    completed_states: list[str] | None = None,
    config: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[dict]:
    """
    Run the current-iteration WIQL query and aggregate the matching items.

    Calls are sequential with no retry. Any non-success upstream response
    raises AzdoUpstreamError carrying the status and body text.

    Args:
        cfg: Resolved credentials (org_url, pat, api_version)
        project: Team project used to scope the WIQL query
        group_by: "AreaPath" or "Project"
        completed_states: Work item states counted as completed
        config: Settings for timeout, TLS and batch size
        transport: Optional httpx transport (used by tests)
    """
    config = config or default_settings
    org_url = cfg["org_url"]
    api_version = cfg.get("api_version") or config.azdo_api_version
    if completed_states is None:
        completed_states = ["Done", "Closed", "Resolved", "Completed"]
    headers = {"Authorization": make_auth(cfg["pat"])}

    async with httpx.AsyncClient(
        timeout=config.azdo_timeout_seconds,
        verify=config.azdo_verify_tls,
        transport=transport,
    ) as client:
        url = wiql_url(org_url, project, api_version)
        response = await client.post(url, headers=headers, json={"query": CURRENT_ITERATION_WIQL})
        if response.status_code >= 400:
            logger.error(
                "WIQL request failed url=%s project=%s status=%s",
                url, project, response.status_code,
            )
            if project:
                message = f"WIQL failed for project '{project}': {response.status_code} {response.text}"
            else:
                message = f"WIQL failed (no project specified): {response.status_code} {response.text}"
            raise AzdoUpstreamError(message, response.status_code, response.text)

        ids = [w.get("id") for w in response.json().get("workItems") or []]
        ids = [i for i in ids if i]
        if not ids:
            return []

        work_items = []
        batch_size = config.azdo_batch_size
        for start in range(0, len(ids), batch_size):
            batch = ids[start:start + batch_size]
            response = await client.get(work_items_url(org_url, batch, api_version), headers=headers)
            if response.status_code >= 400:
                logger.error("Work item fetch failed status=%s", response.status_code)
                raise AzdoUpstreamError(
                    f"Workitems fetch failed: {response.status_code} {response.text}",
                    response.status_code,
                    response.text,
                )
            value = response.json().get("value")
            if isinstance(value, list):
                work_items.extend(value)

    logger.info("Fetched %d work items for project=%s", len(work_items), project)
    return aggregate_groups(work_items, group_by, completed_states)
