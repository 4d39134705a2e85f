"""Tests for the dashboard aggregation service."""

from datetime import date

import pytest

from sprintboard.models.schemas import DashboardConfig
from sprintboard.services import aggregation_service as agg
from sprintboard.services.parser_service import parse_export

S11 = "Sprint 11 (20-01-25 to 02-02-25)"
S12 = "Sprint 12 (03-02-25 to 16-02-25)"


@pytest.fixture
def parsed(sample_export):
    return parse_export(sample_export)


@pytest.fixture
def rows(parsed):
    return parsed["rows"]


@pytest.fixture
def sprint_dates(parsed):
    return parsed["sprint_dates"]


class TestSelectors:
    def test_list_sprints_newest_first(self, rows):
        assert agg.list_sprints(rows) == ["all", S12, S11]

    def test_list_sprints_without_numbers(self):
        rows = [{"Sprint": "Alpha"}, {"Sprint": "Beta"}, {"Sprint": "Sprint 3"}]

        assert agg.list_sprints(rows) == ["all", "Sprint 3", "Beta", "Alpha"]

    def test_list_assignees(self, rows):
        assert agg.list_assignees(rows) == ["all", "Alice", "Bob", "Carol"]

    def test_filter_rows(self, rows):
        assert len(agg.filter_rows(rows)) == 7
        assert len(agg.filter_rows(rows, sprint=S12)) == 6
        assert [r["Issue key"] for r in agg.filter_rows(rows, S12, "Bob")] == ["APP-4", "APP-5", "APP-6"]


class TestAssigneeStats:
    """Tests for compute_assignee_stats()."""

    def test_buckets_and_capacity(self, rows):
        stats = agg.compute_assignee_stats(rows)

        alice = stats["Alice"]
        assert alice["stories"] == 2
        assert alice["tasks"] == 1
        assert alice["in_progress_story_points"] == 8
        assert alice["to_do_story_points"] == 8
        assert alice["capacity_used"] == 16
        assert alice["sprint_capacity"] == 16
        assert alice["capacity_remaining"] == 0
        assert alice["capacity_utilization"] == pytest.approx(100)
        assert alice["allocation_status"] == "On Track"

        bob = stats["Bob"]
        assert bob["bugs"] == 1
        assert bob["subtasks"] == 1
        assert bob["done_count"] == 1
        assert bob["completed_story_points"] == 2
        assert bob["remaining_story_points"] == 4
        assert bob["capacity_used"] == 4
        assert bob["allocation_status"] == "Under Allocated"

    def test_capacity_override(self, rows):
        stats = agg.compute_assignee_stats(rows, {"Alice": 12})

        assert stats["Alice"]["sprint_capacity"] == 12
        assert stats["Alice"]["capacity_remaining"] == -4
        assert stats["Alice"]["allocation_status"] == "Over Allocated"

    def test_awaiting_statuses_do_not_use_capacity(self):
        rows = [
            {"Assignee": "A", "Status": "Awaiting Testing", "Story Points": "3"},
            {"Assignee": "A", "Status": "Awaiting Versioning", "Story Points": "2"},
            {"Assignee": "A", "Status": "Blocked", "Story Points": "1"},
        ]

        stats = agg.compute_assignee_stats(rows)["A"]

        assert stats["capacity_used"] == 0
        assert stats["remaining_story_points"] == 6
        assert stats["awaiting_testing_story_points"] == 3
        assert stats["awaiting_versioning_story_points"] == 2
        assert stats["available_story_points"] == 1

    def test_unassigned_and_bad_points(self):
        stats = agg.compute_assignee_stats([{"Status": "To Do", "Story Points": "lots"}])

        assert stats["Unassigned"]["total_story_points"] == 0
        assert stats["Unassigned"]["todo_count"] == 1


class TestSprintTimeline:
    def test_all_has_no_timeline(self, sprint_dates, today):
        assert agg.compute_sprint_timeline("all", sprint_dates, {}, today) is None
        assert agg.compute_sprint_timeline("Unknown", sprint_dates, {}, today) is None

    def test_calendar_length(self, sprint_dates, today):
        timeline = agg.compute_sprint_timeline(S12, sprint_dates, {}, today)

        assert timeline == {
            "start_date": "02/03/2025",
            "end_date": "02/16/2025",
            "elapsed_days": 8,
            "total_days": 14,
            "days_remaining": 7,
            "percent_time_elapsed": 57,
            "is_configured": False,
        }

    def test_configured_length(self, sprint_dates, today):
        timeline = agg.compute_sprint_timeline(S12, sprint_dates, {S12: 10}, today)

        assert timeline["total_days"] == 10
        assert timeline["days_remaining"] == 3
        assert timeline["percent_time_elapsed"] == 80
        assert timeline["is_configured"] is True

    def test_before_start_clamps_to_day_one(self, sprint_dates):
        timeline = agg.compute_sprint_timeline(S12, sprint_dates, {}, date(2025, 1, 1))

        assert timeline["elapsed_days"] == 1
        assert timeline["days_remaining"] == 14


class TestRiskRegister:
    """Tests for compute_risk_register()."""

    TODAY = date(2025, 3, 10)

    def test_overdue_is_high(self):
        rows = [
            {"Issue key": "R-1", "Assignee": "A", "Status": "To Do", "Story Points": "3", "Due Date": "7/3/25"},
            {"Issue key": "R-2", "Assignee": "A", "Status": "Done", "Story Points": "3", "Due Date": "1/3/25"},
            {"Issue key": "R-3", "Assignee": "A", "Status": "To Do", "Story Points": "3", "Due Date": "9/3/25"},
        ]
        stats = agg.compute_assignee_stats(rows)

        risks = agg.compute_risk_register(rows, stats, {}, self.TODAY)

        assert [r["issue_key"] for r in risks] == ["R-1", "R-3"]
        assert risks[0]["risk_level"] == "High"
        assert risks[0]["reason"] == "Overdue by 3 days"
        assert risks[1]["reason"] == "Overdue by 1 day"
        assert risks[0]["project"] == "Unknown"

    def test_overloaded_assignee_is_high(self):
        rows = [{"Issue key": "R-1", "Assignee": "A", "Status": "To Do", "Story Points": "40"}]
        stats = agg.compute_assignee_stats(rows)

        [risk] = agg.compute_risk_register(rows, stats, {}, self.TODAY)

        assert risk["risk_level"] == "High"
        assert risk["reason"] == "Assignee at 250% utilization"
        assert risk["days_late"] is None

    def test_unestimated_due_soon_is_medium(self):
        rows = [{"Issue key": "R-1", "Assignee": "A", "Status": "To Do", "Target End": "2025-03-12"}]
        stats = agg.compute_assignee_stats(rows)

        [risk] = agg.compute_risk_register(rows, stats, {}, self.TODAY)

        assert risk["risk_level"] == "Medium"
        assert risk["reason"] == "No Story Points - due in 2 days"
        assert risk["days_late"] == -2

    def test_falls_back_to_sprint_end(self, rows, sprint_dates):
        stats = agg.compute_assignee_stats(rows)

        risks = agg.compute_risk_register(rows, stats, sprint_dates, date(2025, 2, 20))

        # Sprint 12 ended on 16 Feb; APP-4 is done
        keys = [r["issue_key"] for r in risks]
        assert "APP-4" not in keys
        assert set(keys) == {"APP-1", "APP-2", "APP-3", "APP-5", "APP-6", "APP-7"}
        assert risks[0]["issue_key"] == "APP-7"
        assert risks[0]["days_late"] == 10

    def test_high_before_medium(self):
        rows = [
            {"Issue key": "M", "Assignee": "A", "Status": "To Do", "Due Date": "12/3/25"},
            {"Issue key": "H", "Assignee": "A", "Status": "To Do", "Story Points": "1", "Due Date": "9/3/25"},
        ]
        stats = agg.compute_assignee_stats(rows)

        risks = agg.compute_risk_register(rows, stats, {}, self.TODAY)

        assert [r["risk_level"] for r in risks] == ["High", "Medium"]


class TestMilestones:
    def test_project_sprint_rollup(self, rows, sprint_dates, today):
        milestones = {
            (m["project"], m["sprint"]): m
            for m in agg.compute_milestones(rows, sprint_dates, today)
        }

        portal = milestones[("Portal", S12)]
        assert portal["total_sp"] == 18
        assert portal["completed_sp"] == 2
        assert portal["percent_complete"] == 11
        assert portal["days_remaining"] == 6
        assert portal["target_end"] == "02/16/2025"
        assert portal["status"] == "Behind"

        old = milestones[("Analytics", S11)]
        assert old["days_remaining"] == -8
        assert old["status"] == "Delayed"

    def test_complete_and_undated(self, today):
        rows = [{"Sprint": "Backlog sprint", "Project": "Core", "Status": "Done", "Story Points": "2"}]

        [milestone] = agg.compute_milestones(rows, {}, today)

        assert milestone["status"] == "Complete"
        assert milestone["target_end"] == "N/A"
        assert milestone["days_remaining"] is None

    def test_rows_without_sprint_are_ignored(self, today):
        rows = [{"Sprint": "No Sprint", "Project": "Core"}, {"Project": "Core"}]

        assert agg.compute_milestones(rows, {}, today) == []


class TestProjectProgress:
    def test_counts_rows(self, rows):
        progress = {p["project"]: p for p in agg.compute_project_progress(rows)}

        assert progress["Portal"]["total_items"] == 4
        assert progress["Portal"]["percent_sp"] == pytest.approx(2 / 18 * 100)
        assert progress["Analytics"]["done_items"] == 0
        assert progress["Analytics"]["percent_count"] == 0


class TestProgramTimeline:
    def test_spans_and_status(self, rows, sprint_dates, today):
        timeline = agg.compute_program_timeline(rows, sprint_dates, {}, today)

        assert [p["project"] for p in timeline] == ["Portal", "Analytics"]
        analytics = timeline[1]
        assert analytics["start_date"] == "2025-01-20"
        assert analytics["end_date"] == "2025-02-16"
        assert analytics["days_to_target"] == 6
        assert analytics["status"] == "On Track"
        assert timeline[0]["percent_complete"] == 11

    def test_custom_target_marks_delay(self, rows, sprint_dates, today):
        timeline = agg.compute_program_timeline(rows, sprint_dates, {"Analytics": "2025-02-01"}, today)

        assert timeline[0]["project"] == "Analytics"
        assert timeline[0]["status"] == "Delayed"
        assert timeline[0]["target_end_date"] == "2025-02-01"
        assert timeline[0]["days_to_target"] == -9

    def test_far_target_is_early(self, rows, sprint_dates, today):
        timeline = agg.compute_program_timeline(rows, sprint_dates, {"Portal": "2025-04-01"}, today)

        assert {p["project"]: p["status"] for p in timeline}["Portal"] == "Early"

    def test_projects_without_dates_are_omitted(self, today):
        rows = [{"Project": "Core", "Sprint": "Backlog"}]

        assert agg.compute_program_timeline(rows, {}, {}, today) == []

    def test_analytics(self, rows, sprint_dates, today):
        timeline = agg.compute_program_timeline(rows, sprint_dates, {"Analytics": "2025-02-01"}, today)

        analytics = agg.compute_timeline_analytics(timeline)

        assert analytics["total"] == 2
        assert analytics["delayed"] == 1
        assert analytics["on_track"] == 1
        assert analytics["avg_days"] == pytest.approx(-1.5)
        assert analytics["insights"] == ["1 project is delayed", "Overall 1.5 days behind"]

    def test_analytics_empty(self):
        assert agg.compute_timeline_analytics([])["avg_days"] == 0


class TestStatusCounts:
    def test_counts(self, rows):
        counts = agg.count_statuses(rows)

        assert counts["In Progress"] == 3
        assert counts["To Do"] == 3
        assert counts["Done"] == 1
        assert counts["Other"] == 0

    def test_other_bucket(self):
        assert agg.count_statuses([{"Status": "Blocked"}, {}])["Other"] == 2


class TestBuildDashboard:
    """Tests for build_dashboard()."""

    def test_composes_every_view(self, parsed, today):
        config = DashboardConfig(assignee_caps={"Alice": 12})

        dashboard = agg.build_dashboard(
            parsed["rows"], parsed["sprint_dates"], config, sprint=S12, today=today
        )

        assert dashboard["filtered_count"] == 6
        assert dashboard["summary"]["overloaded_count"] == 1
        assert dashboard["sprint_timeline"]["total_days"] == 14
        # Alice is 4 points over the cap of 12 and Bob has slack
        assert dashboard["suggestions"][0]["from"] == "Alice"
        assert dashboard["suggestions"][0]["to"] == "Bob"
        assert dashboard["what_if"]["current_capacity"] == 28
        assert [p["project"] for p in dashboard["sprint_project_progress"]] == ["Portal", "Analytics"]

    def test_idempotent(self, parsed, today):
        config = DashboardConfig()

        first = agg.build_dashboard(parsed["rows"], parsed["sprint_dates"], config, today=today)
        second = agg.build_dashboard(parsed["rows"], parsed["sprint_dates"], config, today=today)

        assert first == second

    def test_empty_dataset(self, today):
        dashboard = agg.build_dashboard([], {}, DashboardConfig(), today=today)

        assert dashboard["row_count"] == 0
        assert dashboard["stats"] == {}
        assert dashboard["suggestions"] == []
        assert dashboard["what_if"]["projected_completion"] == 0


class TestHalfUpRounding:
    """Percentages round halves up, never to the nearest even value."""

    def test_round_half_up(self):
        assert agg.round_half_up(74.5) == 75
        assert agg.round_half_up(62.5) == 63
        assert agg.round_half_up(0.5) == 1
        assert agg.round_half_up(74.49) == 74

    def test_milestone_at_boundary_is_on_track(self, today):
        rows = [
            {"Sprint": "Sprint 1", "Project": "Core", "Status": "Done", "Story Points": "149"},
            {"Sprint": "Sprint 1", "Project": "Core", "Status": "To Do", "Story Points": "51"},
        ]

        [milestone] = agg.compute_milestones(rows, {}, today)

        assert milestone["percent_complete"] == 75
        assert milestone["status"] == "On Track"

    def test_completion_rate_at_boundary(self):
        rows = [
            {"Assignee": "A", "Status": "Done", "Story Points": "5"},
            {"Assignee": "A", "Status": "To Do", "Story Points": "3"},
        ]

        summary = agg.compute_summary(agg.compute_assignee_stats(rows), [])

        assert summary["completion_rate"] == 63

    def test_time_elapsed_at_boundary(self, sprint_dates):
        timeline = agg.compute_sprint_timeline(S12, sprint_dates, {S12: 8}, date(2025, 2, 7))

        assert timeline["elapsed_days"] == 5
        assert timeline["percent_time_elapsed"] == 63

    def test_timeline_percent_at_boundary(self, sprint_dates, today):
        rows = [
            {"Sprint": S12, "Project": "Core", "Status": "Done", "Story Points": "5"},
            {"Sprint": S12, "Project": "Core", "Status": "To Do", "Story Points": "3"},
        ]

        [project] = agg.compute_program_timeline(rows, sprint_dates, {}, today)

        assert project["percent_complete"] == 63


class TestNonFiniteStoryPoints:
    def test_infinite_cell_counts_as_zero(self, today):
        rows = [{"Issue key": "A-1", "Assignee": "Alice", "Status": "To Do", "Story Points": "inf"}]

        dashboard = agg.build_dashboard(rows, {}, DashboardConfig(), today=today)

        assert dashboard["stats"]["Alice"]["total_story_points"] == 0
        assert dashboard["risks"] == []
