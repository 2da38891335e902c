"""Ticket, sprint, changelog and snapshot records consumed by the engine."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

SPRINT_PLANNED = "PLANNED"
SPRINT_ACTIVE = "ACTIVE"
SPRINT_CLOSED = "CLOSED"
SPRINT_COMPLETED = "COMPLETED"
SPRINT_BACKLOG = "BACKLOG"

CLOSED_SPRINT_STATES = (SPRINT_CLOSED, SPRINT_COMPLETED)

# Jira formats: "2024-10-31T12:11:56.289-0400", "2024-10-31T12:11:56.289Z", "2024-10-31"
_DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_date(value) -> Optional[datetime]:
    """Parse a tracker timestamp into a naive UTC datetime.

    Accepts datetimes as-is (aware ones are converted to UTC). Returns None for
    empty or unparseable input.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(str(value), fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_date(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _optional_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Ticket:
    key: str
    summary: str = ""
    status: str = ""
    assignee: Optional[str] = None
    story_points: Optional[float] = None
    bounce_back_count: int = 0
    carryover_count: int = 0
    issue_type: str = ""
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def assignee_name(self) -> Optional[str]:
        """Trimmed assignee, or None when unassigned."""
        name = (self.assignee or "").strip()
        return name or None

    @property
    def points(self) -> float:
        return self.story_points or 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "Ticket":
        return cls(
            key=str(data.get("key") or data.get("jiraId") or ""),
            summary=data.get("summary") or "",
            status=data.get("status") or "",
            assignee=data.get("assignee"),
            story_points=_optional_float(data.get("storyPoints")),
            bounce_back_count=max(0, _optional_int(data.get("bounceBackCount")) or 0),
            carryover_count=max(0, _optional_int(data.get("carryoverCount")) or 0),
            issue_type=data.get("issueType") or "",
            created_at=parse_date(data.get("createdAt")),
            closed_at=parse_date(data.get("closedAt")),
            updated_at=parse_date(data.get("updatedAt")),
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "summary": self.summary,
            "status": self.status,
            "assignee": self.assignee,
            "storyPoints": self.story_points,
            "bounceBackCount": self.bounce_back_count,
            "carryoverCount": self.carryover_count,
            "issueType": self.issue_type,
            "createdAt": format_date(self.created_at),
            "closedAt": format_date(self.closed_at),
            "updatedAt": format_date(self.updated_at),
        }


@dataclass
class Sprint:
    """A sprint and the tickets it currently owns.

    The precomputed totals are copied from the tracker's sprint report when
    available. They may reflect scope changes no longer visible in the
    current ticket list, so they win over counts derived from ``tickets``.
    """

    id: str
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str = SPRINT_PLANNED
    completed_at: Optional[datetime] = None
    total_tickets: Optional[int] = None
    closed_tickets: Optional[int] = None
    planned_tickets: Optional[int] = None
    added_tickets: Optional[int] = None
    removed_tickets: Optional[int] = None
    story_points_total: Optional[float] = None
    tickets: list = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == SPRINT_ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_SPRINT_STATES

    @classmethod
    def from_dict(cls, data: dict) -> "Sprint":
        return cls(
            id=str(data.get("id")),
            name=data.get("name") or "",
            start_date=parse_date(data.get("startDate")),
            end_date=parse_date(data.get("endDate")),
            status=(data.get("status") or SPRINT_PLANNED).upper(),
            completed_at=parse_date(data.get("completedAt")),
            total_tickets=_optional_int(data.get("totalTickets")),
            closed_tickets=_optional_int(data.get("closedTickets")),
            planned_tickets=_optional_int(data.get("plannedTickets")),
            added_tickets=_optional_int(data.get("addedTickets")),
            removed_tickets=_optional_int(data.get("removedTickets")),
            story_points_total=_optional_float(data.get("storyPointsTotal")),
            tickets=[Ticket.from_dict(t) for t in data.get("tickets", [])],
        )


@dataclass(frozen=True)
class ChangelogEvent:
    """One field transition from a ticket's history."""

    timestamp: datetime
    field: str
    from_value: Optional[str] = None
    to_value: Optional[str] = None


def safe_parse(value: Optional[str], default):
    """Decode a JSON blob, falling back to ``default`` when absent or malformed."""
    if not value:
        return default
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Discarding malformed snapshot payload")
        return default
    return parsed if parsed is not None else default


@dataclass
class SprintSnapshot:
    """Frozen view of a closed sprint.

    Sub-collections are stored as JSON strings so a store can persist them
    verbatim. Use the accessors to read them back.
    """

    sprint_id: str
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str = SPRINT_CLOSED
    totals: str = "{}"
    tickets: str = "[]"
    assignees: str = "[]"
    delivery_times: Optional[str] = None
    ticket_times: Optional[str] = None
    updated_at: Optional[datetime] = None

    def totals_dict(self) -> dict:
        parsed = safe_parse(self.totals, {})
        return parsed if isinstance(parsed, dict) else {}

    def ticket_list(self) -> list:
        parsed = safe_parse(self.tickets, [])
        return parsed if isinstance(parsed, list) else []

    def assignee_list(self) -> list:
        parsed = safe_parse(self.assignees, [])
        return parsed if isinstance(parsed, list) else []

    def delivery_time_list(self) -> list:
        parsed = safe_parse(self.delivery_times, [])
        return parsed if isinstance(parsed, list) else []

    def ticket_time_list(self) -> list:
        parsed = safe_parse(self.ticket_times, [])
        return parsed if isinstance(parsed, list) else []

    def to_record(self) -> dict:
        """Raw storage form, blobs left serialized."""
        return {
            "sprintId": self.sprint_id,
            "name": self.name,
            "startDate": format_date(self.start_date),
            "endDate": format_date(self.end_date),
            "status": self.status,
            "totals": self.totals,
            "tickets": self.tickets,
            "assignees": self.assignees,
            "deliveryTimes": self.delivery_times,
            "ticketTimes": self.ticket_times,
            "updatedAt": format_date(self.updated_at),
        }

    @classmethod
    def from_record(cls, data: dict) -> "SprintSnapshot":
        return cls(
            sprint_id=str(data.get("sprintId")),
            name=data.get("name") or "",
            start_date=parse_date(data.get("startDate")),
            end_date=parse_date(data.get("endDate")),
            status=data.get("status") or SPRINT_CLOSED,
            totals=data.get("totals") or "{}",
            tickets=data.get("tickets") or "[]",
            assignees=data.get("assignees") or "[]",
            delivery_times=data.get("deliveryTimes"),
            ticket_times=data.get("ticketTimes"),
            updated_at=parse_date(data.get("updatedAt")),
        )

    def to_report(self) -> dict:
        """Parsed form for API responses."""
        return {
            "sprintId": self.sprint_id,
            "name": self.name,
            "startDate": format_date(self.start_date),
            "endDate": format_date(self.end_date),
            "status": self.status,
            "totals": self.totals_dict(),
            "tickets": self.ticket_list(),
            "assignees": self.assignee_list(),
            "deliveryTimes": self.delivery_time_list(),
            "ticketTimes": self.ticket_time_list(),
        }
