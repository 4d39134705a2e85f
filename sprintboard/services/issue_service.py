"""
Issue field access and duplicate-row merge policies.

Exports frequently repeat an issue on several rows (one per sprint, label or
linked item). The aggregations that must count each issue once share the
two merge policies defined here:

- merge_rebalance_items: story points are summed across duplicates
- merge_progress_items: the first non-zero story point value wins and a
  "done" status on any duplicate is sticky
"""

import math
import re
from datetime import date, datetime

from dateutil import parser as dtparser

UNASSIGNED = "Unassigned"
UNKNOWN = "Unknown"
NO_PROJECT = "No Project"

ISSUE_KEY_COLUMNS = ("Issue key", "Key", "Issue Key")
ASSIGNEE_COLUMNS = ("Assignee", "D")
SPRINT_COLUMNS = ("Sprint", "G")
TYPE_COLUMNS = ("Issue Type", "Type")
SUMMARY_COLUMNS = ("Summary", "Issue summary")
PROJECT_KEY_COLUMNS = ("Project key", "Project Key", "ProjectKey")
PARENT_COLUMNS = (
    "Parent",
    "Parent Key",
    "Parent Id",
    "Parent ID",
    "ParentIssue",
    "Parent Issue",
)
DUE_DATE_COLUMNS = ("Due Date", "Due date")
TARGET_END_COLUMNS = ("Target End", "Target end")
PARENT_TYPE_MARKERS = ("story", "task", "bug", "epic")

# Leading decimal number of a story point cell ("3 SP" -> "3")
LEADING_NUMBER = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def field(row: dict, *names: str, default: str = "") -> str:
    """Return the first non-empty value among the given column names."""
    for name in names:
        value = row.get(name)
        if value:
            return str(value)
    return default


def story_points(value) -> float:
    """
    Parse a story point value from its leading number.

    "3 SP" and "2.5pts" read as 3 and 2.5. Blanks, garbage and non-finite
    values ("inf", "1e999", "nan") count as zero.
    """
    if value is None:
        return 0.0
    match = LEADING_NUMBER.match(str(value))
    if not match:
        return 0.0
    sp = float(match.group())
    if not math.isfinite(sp):
        return 0.0
    return sp


def row_story_points(row: dict) -> float:
    return story_points(row.get("Story Points") or row.get("SP"))


def assignee_of(row: dict) -> str:
    return field(row, *ASSIGNEE_COLUMNS, default=UNASSIGNED)


def sprint_of(row: dict) -> str:
    return field(row, *SPRINT_COLUMNS)


def issue_type_of(row: dict) -> str:
    return field(row, *TYPE_COLUMNS)


def is_subtask_type(issue_type: str) -> bool:
    return "sub" in issue_type.lower()


def is_parent_issue(row: dict) -> bool:
    """Story, task, bug or epic rows that are not sub-tasks."""
    issue_type = issue_type_of(row).lower()
    if not issue_type or "sub" in issue_type:
        return False
    return any(marker in issue_type for marker in PARENT_TYPE_MARKERS)


def is_done(row: dict) -> bool:
    """Done when Status or Resolution reads "done" (any case)."""
    status = field(row, "Status").lower()
    resolution = field(row, "Resolution").lower()
    return status == "done" or resolution == "done"


def parse_day_first_date(value: str | None) -> date | None:
    """
    Parse "D/M/YY" or "D/M/YYYY" dates, falling back to generic parsing.

    Exports write due dates day-first; anything else (ISO dates, "12 Mar
    2025") goes through dateutil. Unparseable values return None.
    """
    if not value:
        return None
    text = str(value).strip()
    parts = text.split(" ", 1)[0].split("/")
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        day, month, year = (int(p) for p in parts)
        if year < 100:
            year += 2000
        try:
            return date(year, month, day)
        except ValueError:
            return None
    try:
        return dtparser.parse(text).date()
    except (ValueError, OverflowError):
        return None


def parse_us_date(value: str | None) -> date | None:
    """Parse the MM/DD/YYYY strings produced by sprint date extraction."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%m/%d/%Y").date()
    except ValueError:
        return None


def merge_rebalance_items(rows: list[dict]) -> list[dict]:
    """
    Collapse rows into unique move candidates keyed by issue key.

    Rows without a key are keyed by their position. For duplicates the story
    points are summed, the first non-empty project wins and distinct
    summaries are joined with " | ". Assignee, parent link and sub-task flag
    come from the first row seen.
    """
    items: dict[str, dict] = {}

    for index, row in enumerate(rows):
        key = field(row, "Issue key", "Key") or str(index)
        sp = row_story_points(row)
        project = field(row, "Project", "E")
        summary = field(row, *SUMMARY_COLUMNS)

        existing = items.get(key)
        if existing is not None:
            existing["sp"] += sp
            if not existing["project"] and project:
                existing["project"] = project
            if summary and summary != existing["summary"]:
                separator = " | " if existing["summary"] else ""
                existing["summary"] = f"{existing['summary']}{separator}{summary}"
            continue

        items[key] = {
            "id": key,
            "assignee": assignee_of(row),
            "sp": sp,
            "summary": summary,
            "project": project,
            "parent": field(row, *PARENT_COLUMNS) or None,
            "is_subtask": is_subtask_type(issue_type_of(row)),
        }

    return list(items.values())


def merge_progress_items(rows: list[dict]) -> list[dict]:
    """
    Collapse rows into unique issues for progress rollups.

    First row seen wins, except that a real project name replaces
    "No Project", a non-empty project key fills a blank one, a non-zero
    story point value fills a zero one (duplicates are not summed) and any
    duplicate marked done makes the issue done.
    """
    unique: dict[str, dict] = {}

    for index, row in enumerate(rows):
        key = (field(row, *ISSUE_KEY_COLUMNS) or str(index)).strip()
        sp = row_story_points(row)
        done = is_done(row)
        project = field(row, "Project", "E")
        project_key = field(row, *PROJECT_KEY_COLUMNS)

        existing = unique.get(key)
        if existing is None:
            unique[key] = {
                "id": key,
                "project": project or NO_PROJECT,
                "project_key": project_key,
                "sp": sp,
                "done": done,
            }
            continue

        if existing["project"] == NO_PROJECT and project:
            existing["project"] = project
        if not existing["project_key"] and project_key:
            existing["project_key"] = project_key
        if not existing["sp"] and sp > 0:
            existing["sp"] = sp
        if done:
            existing["done"] = True

    return list(unique.values())
