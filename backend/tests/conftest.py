"""Shared fixtures for delivery analytics tests."""

import pytest
import sys
import os
from datetime import datetime

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from analytics.cache import NullCache
from analytics.models import ChangelogEvent, Sprint, Ticket
from analytics.repository import InMemorySprintRepository
from analytics.snapshot_store import InMemorySnapshotStore


@pytest.fixture
def make_ticket():
    """Factory for tickets with sensible defaults."""
    def _make(key, status="To Do", **kwargs):
        return Ticket(key=key, summary=kwargs.pop("summary", f"Work on {key}"), status=status, **kwargs)
    return _make


@pytest.fixture
def make_sprint():
    """Factory for sprints; dates accept datetimes."""
    def _make(sprint_id, name, start=None, end=None, status="CLOSED", tickets=None, **kwargs):
        return Sprint(
            id=str(sprint_id),
            name=name,
            start_date=start,
            end_date=end,
            status=status,
            tickets=list(tickets or []),
            **kwargs
        )
    return _make


@pytest.fixture
def status_event():
    """Factory for status transition events."""
    def _make(when, to_status, from_status=None):
        return ChangelogEvent(timestamp=when, field="status", from_value=from_status, to_value=to_status)
    return _make


@pytest.fixture
def bounce_changelog(status_event):
    """In Progress -> In QA -> In Progress -> Done, with one QA bounce-back."""
    return [
        status_event(datetime(2024, 1, 1), "In Progress", "To Do"),
        status_event(datetime(2024, 1, 5), "In QA", "In Progress"),
        status_event(datetime(2024, 1, 6), "In Progress", "In QA"),
        status_event(datetime(2024, 1, 10), "Done", "In Progress"),
    ]


@pytest.fixture
def closed_sprint(make_sprint, make_ticket):
    """Two-week closed sprint: Mon 2024-01-01 to Fri 2024-01-12."""
    return make_sprint(
        100, "ABC Sprint 1",
        start=datetime(2024, 1, 1),
        end=datetime(2024, 1, 12),
        status="CLOSED",
        tickets=[
            make_ticket("ABC-1", "Done", assignee="Alice", story_points=5.0,
                        created_at=datetime(2024, 1, 1), closed_at=datetime(2024, 1, 4)),
            make_ticket("ABC-2", "Closed", assignee="Bob", story_points=3.0,
                        created_at=datetime(2024, 1, 2), closed_at=datetime(2024, 1, 10)),
            make_ticket("ABC-3", "In Progress", assignee="Alice", story_points=2.0,
                        bounce_back_count=1, carryover_count=1, created_at=datetime(2024, 1, 3)),
            make_ticket("ABC-4", "Closed - Cancelled", assignee="Bob", story_points=8.0),
        ],
    )


@pytest.fixture
def active_sprint(make_sprint, make_ticket):
    """Active sprint: Mon 2024-01-15 to Fri 2024-01-26."""
    return make_sprint(
        101, "ABC Sprint 2",
        start=datetime(2024, 1, 15),
        end=datetime(2024, 1, 26),
        status="ACTIVE",
        tickets=[
            make_ticket("ABC-5", "Done", assignee="Alice", story_points=2.0,
                        created_at=datetime(2024, 1, 15), closed_at=datetime(2024, 1, 16)),
            make_ticket("ABC-6", "Ready for Release", assignee="Bob", story_points=3.0,
                        created_at=datetime(2024, 1, 15)),
            make_ticket("ABC-7", "In Progress", assignee="Alice", story_points=5.0,
                        bounce_back_count=2, carryover_count=1, created_at=datetime(2024, 1, 15)),
            make_ticket("ABC-8", "To Do", story_points=1.0, created_at=datetime(2024, 1, 16)),
        ],
    )


@pytest.fixture
def repository(closed_sprint, active_sprint):
    return InMemorySprintRepository([closed_sprint, active_sprint])


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def app(repository, snapshot_store):
    """Create Flask test app."""
    from delivery_api import create_app
    app = create_app(repository=repository, snapshot_store=snapshot_store, cache=NullCache())
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def jira_headers():
    return {
        "X-Jira-Server": "https://test.atlassian.net",
        "X-Jira-Email": "test@example.com",
        "X-Jira-Token": "token123"
    }
