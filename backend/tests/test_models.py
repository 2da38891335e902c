"""Tests for records and sprint data loading."""

import json
from datetime import datetime

from analytics.models import Sprint, Ticket, parse_date
from analytics.repository import InMemorySprintRepository, load_sprints_file


class TestParseDate:

    def test_jira_offset_converted_to_utc(self):
        assert parse_date("2024-10-31T12:11:56.289-0400") == datetime(2024, 10, 31, 16, 11, 56, 289000)

    def test_plain_date(self):
        assert parse_date("2024-01-05") == datetime(2024, 1, 5)

    def test_unparseable(self):
        assert parse_date("next tuesday") is None
        assert parse_date("") is None


class TestFromDict:

    def test_ticket(self):
        ticket = Ticket.from_dict({
            "jiraId": "ABC-1",
            "status": "In QA",
            "assignee": "  Alice ",
            "storyPoints": "3",
            "bounceBackCount": -2,
            "issueType": "Bug",
            "createdAt": "2024-01-02",
        })

        assert ticket.key == "ABC-1"
        assert ticket.assignee_name == "Alice"
        assert ticket.story_points == 3.0
        assert ticket.bounce_back_count == 0
        assert ticket.created_at == datetime(2024, 1, 2)
        assert ticket.closed_at is None

    def test_unassigned_ticket(self):
        ticket = Ticket.from_dict({"key": "ABC-2", "assignee": "   "})

        assert ticket.assignee_name is None
        assert ticket.points == 0.0

    def test_sprint(self):
        sprint = Sprint.from_dict({
            "id": 42,
            "name": "ABC Sprint 7",
            "status": "active",
            "startDate": "2024-01-15",
            "endDate": "2024-01-26",
            "plannedTickets": 8,
            "tickets": [{"key": "ABC-1", "status": "Done"}],
        })

        assert sprint.id == "42"
        assert sprint.is_active
        assert sprint.planned_tickets == 8
        assert sprint.total_tickets is None
        assert sprint.tickets[0].status == "Done"


class TestSprintRepository:

    def test_list_by_status_newest_first(self, closed_sprint, active_sprint, make_sprint):
        older = make_sprint(99, "ABC Sprint 0", end=datetime(2023, 12, 29), status="COMPLETED")
        repository = InMemorySprintRepository([older, closed_sprint, active_sprint])

        closed = repository.list_sprints(["closed", "completed"])

        assert [s.id for s in closed] == ["100", "99"]
        assert repository.get_sprint(101) is active_sprint

    def test_load_sprints_file(self, tmp_path):
        path = tmp_path / "sprints.json"
        path.write_text(json.dumps({"sprints": [
            {"id": 1, "name": "ABC Sprint 1", "status": "CLOSED", "endDate": "2024-01-12"},
            {"id": 2, "name": "ABC Sprint 2", "status": "ACTIVE", "endDate": "2024-01-26"},
        ]}))

        repository = load_sprints_file(str(path))

        assert [s.id for s in repository.list_sprints()] == ["2", "1"]

    def test_missing_or_corrupt_file(self, tmp_path):
        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("{")

        assert load_sprints_file(str(tmp_path / "missing.json")).list_sprints() == []
        assert load_sprints_file(str(corrupt)).list_sprints() == []
