"""
Dashboard aggregation service.

Every function here is a pure function of the parsed rows plus explicit
configuration (capacities, sprint day overrides, target dates) and the
reference date. Nothing is cached between calls; the dashboard recomputes
all views on every filter or data change via build_dashboard().
"""

import math
import re
from datetime import date

from sprintboard.services import allocation_service
from sprintboard.services.issue_service import (
    DUE_DATE_COLUMNS,
    TARGET_END_COLUMNS,
    UNKNOWN,
    assignee_of,
    field,
    parse_day_first_date,
    parse_us_date,
    row_story_points,
    sprint_of,
)

ALL = "all"

ISSUE_TYPE_COUNTERS = {
    "Initiative": "initiatives",
    "Epic": "epics",
    "Story": "stories",
    "Bug": "bugs",
    "Task": "tasks",
    "Sub-task": "subtasks",
}

STATUS_COUNTERS = {
    "Done": "done_count",
    "In Progress": "in_progress_count",
    "To Do": "todo_count",
    "Awaiting Testing": "awaiting_testing_count",
    "Awaiting Versioning": "awaiting_versioning_count",
}

TRACKED_STATUSES = ("Done", "In Progress", "To Do", "Awaiting Testing", "Awaiting Versioning")

# Risk thresholds
OVERLOAD_UTILIZATION_PCT = 200
MEDIUM_RISK_WINDOW_DAYS = 5
UNDER_ALLOCATED_RATIO = 0.7
EARLY_THRESHOLD_DAYS = 14


def _project_of(row: dict) -> str:
    return field(row, "Project", "B", default=UNKNOWN)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (74.5 -> 75)."""
    return int(math.floor(value + 0.5))


def _plural_days(n: int) -> str:
    return f"{n} day{'' if n == 1 else 's'}"


def list_sprints(rows: list[dict]) -> list[str]:
    """
    Distinct sprint labels for the selector, prefixed with "all".

    Labels carrying a number sort by that number descending (newest sprint
    first); otherwise they sort by label descending.
    """
    seen = []
    for row in rows:
        sprint = sprint_of(row)
        if sprint and sprint not in seen:
            seen.append(sprint)

    def number(label: str) -> int | None:
        match = re.search(r"\d+", label)
        return int(match.group()) if match else None

    numbered = [s for s in seen if number(s) is not None]
    plain = [s for s in seen if number(s) is None]
    numbered.sort(key=lambda s: (number(s), s), reverse=True)
    plain.sort(reverse=True)
    return [ALL, *numbered, *plain]


def list_assignees(rows: list[dict]) -> list[str]:
    """Distinct assignees, sorted, prefixed with "all"."""
    names = {field(row, "Assignee", "D") for row in rows}
    names.discard("")
    return [ALL, *sorted(names)]


def filter_rows(rows: list[dict], sprint: str = ALL, assignee: str = ALL) -> list[dict]:
    """Apply the sprint and assignee selections ("all" disables a filter)."""
    return [
        row
        for row in rows
        if (sprint == ALL or sprint_of(row) == sprint)
        and (assignee == ALL or field(row, "Assignee", "D") == assignee)
    ]


def _new_assignee_stats(capacity: float) -> dict:
    return {
        "epics": 0,
        "stories": 0,
        "bugs": 0,
        "tasks": 0,
        "subtasks": 0,
        "initiatives": 0,
        "total_story_points": 0.0,
        "completed_story_points": 0.0,
        "remaining_story_points": 0.0,
        "awaiting_testing_story_points": 0.0,
        "awaiting_versioning_story_points": 0.0,
        "available_story_points": 0.0,
        "in_progress_story_points": 0.0,
        "to_do_story_points": 0.0,
        "sprint_capacity": capacity,
        "capacity_used": 0.0,
        "capacity_remaining": 0.0,
        "capacity_utilization": 0.0,
        "allocation_status": "On Track",
        "done_count": 0,
        "in_progress_count": 0,
        "todo_count": 0,
        "awaiting_testing_count": 0,
        "awaiting_versioning_count": 0,
        "item_count": 0,
    }


def compute_assignee_stats(
    rows: list[dict],
    assignee_caps: dict[str, float] | None = None,
    default_capacity: float = 16,
) -> dict[str, dict]:
    """
    Accumulate per-assignee counts, story point buckets and capacity usage.

    Capacity used is the in-progress plus to-do story points; awaiting
    testing/versioning work no longer consumes the assignee's capacity.
    """
    caps = assignee_caps or {}
    by_assignee: dict[str, dict] = {}

    for row in rows:
        assignee = assignee_of(row)
        stats = by_assignee.get(assignee)
        if stats is None:
            stats = _new_assignee_stats(caps.get(assignee) or default_capacity)
            by_assignee[assignee] = stats

        counter = ISSUE_TYPE_COUNTERS.get(field(row, "Issue Type"))
        if counter:
            stats[counter] += 1

        status = field(row, "Status")
        counter = STATUS_COUNTERS.get(status)
        if counter:
            stats[counter] += 1

        sp = row_story_points(row)
        if sp > 0:
            stats["total_story_points"] += sp
            if status == "Done":
                stats["completed_story_points"] += sp
            elif status == "Awaiting Testing":
                stats["awaiting_testing_story_points"] += sp
                stats["remaining_story_points"] += sp
            elif status == "Awaiting Versioning":
                stats["awaiting_versioning_story_points"] += sp
                stats["remaining_story_points"] += sp
            else:
                if status == "In Progress":
                    stats["in_progress_story_points"] += sp
                elif status == "To Do":
                    stats["to_do_story_points"] += sp
                stats["remaining_story_points"] += sp
                stats["available_story_points"] += sp

        stats["item_count"] += 1

    for stats in by_assignee.values():
        capacity = stats["sprint_capacity"]
        used = stats["in_progress_story_points"] + stats["to_do_story_points"]
        stats["capacity_used"] = used
        stats["capacity_remaining"] = capacity - used
        stats["capacity_utilization"] = (used / capacity) * 100 if capacity > 0 else 0.0

        if used > capacity:
            stats["allocation_status"] = "Over Allocated"
        elif used < capacity * UNDER_ALLOCATED_RATIO:
            stats["allocation_status"] = "Under Allocated"
        else:
            stats["allocation_status"] = "On Track"

    return by_assignee


def compute_summary(stats: dict[str, dict], risks: list[dict]) -> dict:
    """Headline KPIs for the overview tab."""
    total_sp = sum(s["total_story_points"] for s in stats.values())
    completed_sp = sum(s["completed_story_points"] for s in stats.values())

    return {
        "total_sp": total_sp,
        "completed_sp": completed_sp,
        "awaiting_testing_sp": sum(s["awaiting_testing_story_points"] for s in stats.values()),
        "available_sp": sum(s["available_story_points"] for s in stats.values()),
        "completion_rate": round_half_up(completed_sp / total_sp * 100) if total_sp > 0 else 0,
        "high_risks": sum(1 for r in risks if r["risk_level"] == "High"),
        "overloaded_count": sum(
            1 for s in stats.values() if s["allocation_status"] == "Over Allocated"
        ),
    }


def compute_sprint_timeline(
    sprint: str,
    sprint_dates: dict[str, dict],
    sprint_days: dict[str, int] | None = None,
    today: date | None = None,
) -> dict | None:
    """
    Elapsed/remaining day counts for the selected sprint.

    Returns None for "all" or a sprint without extracted dates. A configured
    day count overrides the calendar length (end - start + 1).
    """
    if sprint == ALL or sprint not in sprint_dates:
        return None

    today = today or date.today()
    overrides = sprint_days or {}
    dates = sprint_dates[sprint]
    start = parse_us_date(dates["start"])
    end = parse_us_date(dates["end"])
    if start is None or end is None:
        return None

    default_days = (end - start).days + 1
    total_days = overrides.get(sprint) or default_days

    days_since_start = (today - start).days
    elapsed = max(1, min(days_since_start + 1, total_days))
    days_remaining = max(0, total_days - elapsed + 1)
    percent_elapsed = min(100, max(0, round_half_up(elapsed / total_days * 100))) if total_days > 0 else 0

    return {
        "start_date": dates["start"],
        "end_date": dates["end"],
        "elapsed_days": elapsed,
        "total_days": total_days,
        "days_remaining": days_remaining,
        "percent_time_elapsed": percent_elapsed,
        "is_configured": bool(overrides.get(sprint)),
    }


def _target_date(row: dict, sprint_dates: dict[str, dict]) -> date | None:
    target = parse_day_first_date(field(row, *DUE_DATE_COLUMNS)) or parse_day_first_date(
        field(row, *TARGET_END_COLUMNS)
    )
    if target is None:
        dates = sprint_dates.get(sprint_of(row))
        if dates:
            target = parse_us_date(dates["end"])
    return target


def compute_risk_register(
    rows: list[dict],
    stats: dict[str, dict],
    sprint_dates: dict[str, dict],
    today: date | None = None,
) -> list[dict]:
    """
    Flag open issues that are overdue, owned by an overloaded assignee, or
    unestimated and due within five days.

    Runs over every row, not just the filtered selection, so that the risk
    tab always shows the whole programme. High risks sort first, then the
    most overdue.
    """
    today = today or date.today()
    utilization = {
        name: (s["total_story_points"] / s["sprint_capacity"] * 100) if s["sprint_capacity"] > 0 else 0
        for name, s in stats.items()
    }
    risks = []

    for row in rows:
        status = field(row, "Status")
        if status == "Done":
            continue

        assignee = assignee_of(row)
        sp = row_story_points(row)
        target = _target_date(row, sprint_dates)
        days_late = (today - target).days if target else None

        entry = {
            "issue_key": field(row, "Issue key", "Key"),
            "project": _project_of(row),
            "assignee": assignee,
            "days_late": days_late,
            "status": status,
            "sp": sp,
            "sprint": sprint_of(row),
        }
        load = utilization.get(assignee, 0)

        if days_late is not None and days_late > 0:
            entry.update(risk_level="High", reason=f"Overdue by {_plural_days(days_late)}")
        elif load > OVERLOAD_UTILIZATION_PCT:
            entry.update(risk_level="High", reason=f"Assignee at {round_half_up(load)}% utilization")
        elif sp == 0 and days_late is not None and -MEDIUM_RISK_WINDOW_DAYS <= days_late < 0:
            entry.update(
                risk_level="Medium",
                reason=f"No Story Points - due in {_plural_days(abs(days_late))}",
            )
        else:
            continue
        risks.append(entry)

    priority = {"High": 0, "Medium": 1}
    risks.sort(key=lambda r: (priority[r["risk_level"]], -(r["days_late"] or 0)))
    return risks


def _milestone_status(percent_complete: int, days_remaining: int | None) -> str:
    if percent_complete >= 100:
        return "Complete"
    if days_remaining is not None and days_remaining < 0:
        return "Delayed"
    if percent_complete < 50:
        return "Behind"
    if percent_complete < 75:
        return "At Risk"
    return "On Track"


def compute_milestones(
    rows: list[dict],
    sprint_dates: dict[str, dict],
    today: date | None = None,
) -> list[dict]:
    """Roll up each (project, sprint) pair against its sprint end date."""
    today = today or date.today()
    groups: dict[tuple[str, str], dict] = {}

    for row in rows:
        sprint = sprint_of(row)
        if not sprint or sprint == "No Sprint":
            continue
        project = _project_of(row)
        group = groups.setdefault(
            (project, sprint),
            {"project": project, "sprint": sprint, "total_sp": 0.0, "completed_sp": 0.0, "items": 0, "done_items": 0},
        )
        done = field(row, "Status") == "Done"
        group["items"] += 1
        if done:
            group["done_items"] += 1
        sp = row_story_points(row)
        if sp > 0:
            group["total_sp"] += sp
            if done:
                group["completed_sp"] += sp

    milestones = []
    for group in groups.values():
        if group["total_sp"] > 0:
            percent = round_half_up(group["completed_sp"] / group["total_sp"] * 100)
        elif group["items"] > 0:
            percent = round_half_up(group["done_items"] / group["items"] * 100)
        else:
            percent = 0

        dates = sprint_dates.get(group["sprint"])
        end = parse_us_date(dates["end"]) if dates else None
        days_remaining = (end - today).days if end else None

        milestones.append({
            "project": group["project"],
            "sprint": group["sprint"],
            "target_end": dates["end"] if dates else "N/A",
            "total_sp": group["total_sp"],
            "completed_sp": group["completed_sp"],
            "percent_complete": percent,
            "days_remaining": days_remaining,
            "status": _milestone_status(percent, days_remaining),
        })

    return milestones


def compute_project_progress(rows: list[dict]) -> list[dict]:
    """Per-project item and story point totals (rows counted as-is)."""
    projects: dict[str, dict] = {}

    for row in rows:
        project = _project_of(row)
        entry = projects.setdefault(
            project,
            {"project": project, "total_items": 0, "done_items": 0, "total_sp": 0.0, "completed_sp": 0.0},
        )
        done = field(row, "Status") == "Done"
        entry["total_items"] += 1
        if done:
            entry["done_items"] += 1
        sp = row_story_points(row)
        if sp > 0:
            entry["total_sp"] += sp
            if done:
                entry["completed_sp"] += sp

    for entry in projects.values():
        entry["percent_sp"] = (
            entry["completed_sp"] / entry["total_sp"] * 100 if entry["total_sp"] > 0 else None
        )
        entry["percent_count"] = (
            entry["done_items"] / entry["total_items"] * 100 if entry["total_items"] > 0 else 0
        )

    return list(projects.values())


def _timeline_status(is_complete: bool, days_to_target: int) -> str:
    if is_complete:
        return "Complete"
    if days_to_target < 0:
        return "Delayed"
    if days_to_target > EARLY_THRESHOLD_DAYS:
        return "Early"
    return "On Track"


TIMELINE_SORT_ORDER = {"Delayed": 0, "Early": 1, "On Track": 2, "Complete": 3}


def compute_program_timeline(
    rows: list[dict],
    sprint_dates: dict[str, dict],
    project_targets: dict[str, str] | None = None,
    today: date | None = None,
) -> list[dict]:
    """
    Per-project delivery window built from the date ranges of its sprints.

    A custom project target (ISO date) replaces the derived end date when
    judging the project. Projects with no dated sprint are left out. The
    result lists delayed projects first, then early, on track and complete,
    each group ordered by end date.
    """
    today = today or date.today()
    targets = project_targets or {}
    projects: dict[str, dict] = {}

    for row in rows:
        project = _project_of(row)
        entry = projects.setdefault(
            project,
            {"project": project, "sprints": [], "total_sp": 0.0, "completed_sp": 0.0, "items": 0, "done_items": 0},
        )
        sprint = sprint_of(row)
        if sprint and sprint not in entry["sprints"]:
            entry["sprints"].append(sprint)
        sp = row_story_points(row)
        entry["total_sp"] += sp
        entry["items"] += 1
        if field(row, "Status") == "Done":
            entry["completed_sp"] += sp
            entry["done_items"] += 1

    timeline = []
    for entry in projects.values():
        starts = []
        ends = []
        for sprint in entry["sprints"]:
            dates = sprint_dates.get(sprint)
            if not dates:
                continue
            start = parse_us_date(dates["start"])
            end = parse_us_date(dates["end"])
            if start and end:
                starts.append(start)
                ends.append(end)
        if not starts:
            continue

        if entry["total_sp"] > 0:
            percent = entry["completed_sp"] / entry["total_sp"] * 100
        elif entry["items"] > 0:
            percent = entry["done_items"] / entry["items"] * 100
        else:
            percent = 0

        end_date = max(ends)
        custom_target = targets.get(entry["project"])
        effective_end = parse_day_first_date(custom_target) if custom_target else None
        effective_end = effective_end or end_date
        days_to_target = (effective_end - today).days
        is_complete = round_half_up(percent) >= 100
        status = _timeline_status(is_complete, days_to_target)

        timeline.append({
            "project": entry["project"],
            "sprints": entry["sprints"],
            "start_date": min(starts).isoformat(),
            "end_date": end_date.isoformat(),
            "total_sp": entry["total_sp"],
            "completed_sp": entry["completed_sp"],
            "items": entry["items"],
            "done_items": entry["done_items"],
            "percent_complete": round_half_up(percent),
            "target_end_date": custom_target or end_date.isoformat(),
            "effective_end_date": effective_end.isoformat(),
            "days_to_target": days_to_target,
            "status": status,
        })

    timeline.sort(key=lambda p: (TIMELINE_SORT_ORDER[p["status"]], p["end_date"]))
    return timeline


def compute_timeline_analytics(timeline: list[dict]) -> dict:
    """KPIs and one-line insights for the programme timeline."""
    total = len(timeline)
    complete = sum(1 for p in timeline if p["status"] == "Complete")
    on_track = sum(1 for p in timeline if p["status"] == "On Track")
    early = sum(1 for p in timeline if p["status"] == "Early")
    delayed = sum(1 for p in timeline if p["status"] == "Delayed")
    avg_days = round(sum(p["days_to_target"] for p in timeline) / total, 1) if total else 0.0

    insights = []
    if delayed:
        insights.append(f"{delayed} project{'s are' if delayed > 1 else ' is'} delayed")
    if early:
        insights.append(f"{early} project{'s are' if early > 1 else ' is'} ahead")
    if complete:
        insights.append(f"{complete} project{'s' if complete > 1 else ''} completed")
    if avg_days:
        insights.append(f"Overall {abs(avg_days)} days {'ahead' if avg_days > 0 else 'behind'}")

    return {
        "total": total,
        "complete": complete,
        "on_track": on_track,
        "early": early,
        "delayed": delayed,
        "total_sp": sum(p["total_sp"] for p in timeline),
        "completed_sp": sum(p["completed_sp"] for p in timeline),
        "avg_days": avg_days,
        "insights": insights,
    }


def count_statuses(rows: list[dict]) -> dict[str, int]:
    """Row counts per tracked status, everything else under "Other"."""
    counts = {status: 0 for status in TRACKED_STATUSES}
    counts["Other"] = 0
    for row in rows:
        status = field(row, "Status")
        if status in counts and status != "Other":
            counts[status] += 1
        else:
            counts["Other"] += 1
    return counts


def build_dashboard(
    rows: list[dict],
    sprint_dates: dict[str, dict],
    config,
    sprint: str = ALL,
    assignee: str = ALL,
    today: date | None = None,
    what_if_multiplier: float = 1.0,
    default_capacity: float = 16,
    rebalance_default_capacity: float = 14,
) -> dict:
    """
    Recompute every dashboard view for one set of inputs.

    Args:
        rows: Parsed export rows
        sprint_dates: Sprint name -> {start, end} from the parser
        config: DashboardConfig with capacities, sprint days and targets
        sprint: Selected sprint or "all"
        assignee: Selected assignee or "all"
        today: Reference date for overdue/remaining calculations
        what_if_multiplier: Capacity multiplier for the projection

    Returns:
        Dictionary matching the DashboardResponse schema
    """
    today = today or date.today()
    selected = filter_rows(rows, sprint, assignee)
    stats = compute_assignee_stats(selected, config.assignee_caps, default_capacity)
    risks = compute_risk_register(rows, stats, sprint_dates, today)
    timeline = compute_program_timeline(rows, sprint_dates, config.project_targets, today)
    rebalance = allocation_service.compute_suggestions_detailed(
        selected, stats, rebalance_default_capacity
    )

    return {
        "row_count": len(rows),
        "filtered_count": len(selected),
        "sprints": list_sprints(rows),
        "assignees": list_assignees(rows),
        "sprint_dates": sprint_dates,
        "selected_sprint": sprint,
        "selected_assignee": assignee,
        "stats": stats,
        "summary": compute_summary(stats, risks),
        "sprint_timeline": compute_sprint_timeline(sprint, sprint_dates, config.sprint_days, today),
        "risks": risks,
        "milestones": compute_milestones(rows, sprint_dates, today),
        "project_progress": compute_project_progress(rows if sprint == ALL else selected),
        "sprint_project_progress": allocation_service.compute_sprint_project_progress(rows, sprint),
        "timeline": timeline,
        "timeline_analytics": compute_timeline_analytics(timeline),
        "program_end_date": config.program_end_date,
        "status_counts": count_statuses(selected),
        "suggestions": rebalance["suggestions"],
        "rejections": rebalance["rejections"],
        "what_if": allocation_service.compute_what_if_projection(stats, what_if_multiplier),
    }
