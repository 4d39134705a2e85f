"""
Capacity allocation service.

Implements the rebalancing advisor, the what-if capacity projection and the
per-project sprint progress rollup:
- Rebalancing: one greedy pass moving whole issues from over-capacity
  assignees to under-capacity ones (largest overflow first, largest issue
  first, no splitting, no backtracking)
- What-if: projected completion if every capacity is scaled by a multiplier
- Sprint progress: unique parent issues per project for one sprint
"""

from sprintboard.services.issue_service import (
    NO_PROJECT,
    is_parent_issue,
    merge_progress_items,
    merge_rebalance_items,
    sprint_of,
)

DEFAULT_REBALANCE_CAPACITY = 14


def _number(value) -> float:
    return value if isinstance(value, (int, float)) else 0


def compute_suggestions_detailed(
    rows: list[dict],
    stats: dict[str, dict],
    default_capacity: float = DEFAULT_REBALANCE_CAPACITY,
) -> dict:
    """
    Propose single-issue moves from over-capacity to under-capacity assignees.

    Args:
        rows: Rows currently in view (duplicates are merged by issue key)
        stats: Per-assignee stats with sprint_capacity and capacity_used
        default_capacity: Capacity used when an assignee has none configured

    Returns:
        Dictionary with "suggestions" in generation order and "rejections"
        listing candidates no under-capacity assignee could absorb
    """
    items = merge_rebalance_items(rows)

    over = []
    under = []
    for assignee, data in stats.items():
        capacity = _number(data.get("sprint_capacity")) or default_capacity
        used = _number(data.get("capacity_used"))
        diff = used - capacity
        if diff > 0:
            over.append({"assignee": assignee, "overflow": diff})
        elif diff < 0:
            under.append({"assignee": assignee, "slack": -diff})

    over.sort(key=lambda o: o["overflow"], reverse=True)
    under.sort(key=lambda u: u["slack"], reverse=True)

    suggestions = []
    rejections = []
    already_suggested: set[str] = set()

    for source in over:
        candidates = sorted(
            (it for it in items if it["assignee"] == source["assignee"] and it["sp"] > 0),
            key=lambda it: it["sp"],
            reverse=True,
        )

        for item in candidates:
            item_id = str(item["id"])
            if item_id in already_suggested:
                continue

            eligible = [u["assignee"] for u in under if u["slack"] >= item["sp"]]
            # No mapping restrictions: every eligible assignee is allowed
            allowed = list(eligible)
            if not allowed:
                rejections.append({
                    "id": item_id,
                    "from": source["assignee"],
                    "sp": item["sp"],
                    "reason": "No under-capacity assignee has enough slack",
                })
                continue

            target_index = next(
                i for i, u in enumerate(under) if u["assignee"] in allowed and u["slack"] >= item["sp"]
            )
            target = under[target_index]

            suggestions.append({
                "id": item_id,
                "from": source["assignee"],
                "to": target["assignee"],
                "sp": item["sp"],
                "summary": item["summary"],
                "project": item["project"] or "",
                "is_subtask": item["is_subtask"],
                "eligible_count": len(eligible),
                "allowed_count": len(allowed),
                "eligible_candidates": eligible,
                "allowed_candidates": allowed,
            })
            already_suggested.add(item_id)

            target["slack"] -= item["sp"]
            source["overflow"] -= item["sp"]
            if target["slack"] <= 0:
                under.pop(target_index)
            if source["overflow"] <= 0:
                break

    return {"suggestions": suggestions, "rejections": rejections}


def compute_suggestions(
    rows: list[dict],
    stats: dict[str, dict],
    default_capacity: float = DEFAULT_REBALANCE_CAPACITY,
) -> list[dict]:
    """Rebalancing suggestions only (see compute_suggestions_detailed)."""
    return compute_suggestions_detailed(rows, stats, default_capacity)["suggestions"]


def compute_what_if_projection(stats: dict[str, dict], multiplier: float = 1.0) -> dict:
    """
    Project sprint completion if every capacity were scaled by multiplier.

    Capacity freed beyond what is currently in use counts towards completed
    story points, capped at 100%.
    """
    values = list(stats.values())
    total_sp = sum(_number(s.get("total_story_points")) for s in values)
    completed_sp = sum(_number(s.get("completed_story_points")) for s in values)
    current_capacity = sum(_number(s.get("sprint_capacity")) for s in values)
    # Scale each capacity before summing
    projected_capacity = sum(_number(s.get("sprint_capacity")) * multiplier for s in values)
    current_used = sum(_number(s.get("capacity_used")) for s in values)

    additional = max(0, projected_capacity - current_used)
    projected_completion = (
        min(100, (completed_sp + additional) / total_sp * 100) if total_sp > 0 else 0
    )

    return {
        "total_sp": total_sp,
        "completed_sp": completed_sp,
        "current_capacity": current_capacity,
        "projected_capacity": projected_capacity,
        "projected_completion": projected_completion,
    }


def compute_sprint_project_progress(rows: list[dict], sprint_name: str = "all") -> list[dict]:
    """
    Progress per project for one sprint, counting each parent issue once.

    percent_sp is None when the project has no estimated work; callers fall
    back to percent_count in that case. Sorted by total story points,
    largest first.
    """
    selected = [
        row
        for row in rows
        if (not sprint_name or sprint_name == "all" or sprint_of(row) == str(sprint_name))
        and is_parent_issue(row)
    ]

    projects: dict[str, dict] = {}
    for issue in merge_progress_items(selected):
        project = str(issue["project"] or NO_PROJECT).strip() or NO_PROJECT
        entry = projects.get(project)
        if entry is None:
            entry = {
                "project": project,
                "project_key": issue["project_key"] or "",
                "total_items": 0,
                "done_items": 0,
                "total_sp": 0.0,
                "completed_sp": 0.0,
            }
            projects[project] = entry

        entry["total_items"] += 1
        entry["total_sp"] += issue["sp"]
        if issue["done"]:
            entry["done_items"] += 1
            entry["completed_sp"] += issue["sp"]

    progress = []
    for entry in projects.values():
        total_sp = entry["total_sp"]
        progress.append({
            **entry,
            "remaining_sp": max(0, total_sp - entry["completed_sp"]),
            "percent_sp": entry["completed_sp"] / total_sp * 100 if total_sp > 0 else None,
            "percent_count": (
                entry["done_items"] / entry["total_items"] * 100 if entry["total_items"] > 0 else 0
            ),
        })

    progress.sort(key=lambda p: p["total_sp"], reverse=True)
    return progress
