"""Sprint and cross-sprint delivery metrics (pure functions).

Every function takes already-loaded sprints/tickets and returns plain dicts
ready for JSON. Cross-sprint functions expect their input to be limited with
``team_scoping.limit_per_team`` first.
"""

import math
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from analytics.business_calendar import business_days_between, business_hours_between, hours_to_days
from analytics.config import BUG_ISSUE_TYPE, HOURS_PER_BUSINESS_DAY, RISK_TOP_N
from analytics.models import format_date, parse_date
from analytics.status import classify_status
from analytics.team_scoping import team_key_of


def percent(numerator: float, denominator: float) -> float:
    """One-decimal percentage; 0 when the denominator is 0."""
    if not denominator:
        return 0
    return math.floor(numerator / denominator * 1000 + 0.5) / 10


def _round1(value: float) -> float:
    return round(value, 1)


def _flags(ticket):
    return classify_status(ticket.status or "")


def _mean(values) -> float:
    return sum(values) / len(values) if values else 0


def resolve_totals(sprint) -> dict:
    """Ticket and point totals, preferring the sprint's precomputed fields."""
    tickets = sprint.tickets

    if sprint.total_tickets is not None and sprint.total_tickets > 0:
        total = sprint.total_tickets
    else:
        total = len(tickets)

    if sprint.planned_tickets is not None and sprint.planned_tickets > 0:
        planned = sprint.planned_tickets
    else:
        planned = total

    added = sprint.added_tickets if sprint.added_tickets is not None and sprint.added_tickets >= 0 else 0
    removed = sprint.removed_tickets if sprint.removed_tickets is not None and sprint.removed_tickets >= 0 else 0

    if sprint.closed_tickets is not None and sprint.closed_tickets >= 0:
        closed = sprint.closed_tickets
    else:
        closed = sum(1 for ticket in tickets if _flags(ticket).is_strict_closed)

    if sprint.story_points_total is not None and sprint.story_points_total > 0:
        story_points_total = sprint.story_points_total
    else:
        story_points_total = sum(ticket.points for ticket in tickets)

    return {
        "totalTickets": total,
        "plannedTickets": planned,
        "addedTickets": added,
        "removedTickets": removed,
        "scopeTickets": max(0, planned + added - removed),
        "closedTickets": closed,
        "storyPointsTotal": story_points_total,
    }


def assignee_rollup(tickets) -> list:
    """Per named assignee story points and ticket counts.

    Sorted by total story points descending, then name.
    """
    totals = {}
    for ticket in tickets:
        name = ticket.assignee_name
        if not name:
            continue
        flags = _flags(ticket)
        entry = totals.setdefault(name, {
            "tickets": 0,
            "closedTickets": 0,
            "finalPhaseTickets": 0,
            "storyPoints": 0.0,
            "closedPoints": 0.0,
        })
        entry["tickets"] += 1
        entry["storyPoints"] += ticket.points
        if flags.is_strict_closed:
            entry["closedTickets"] += 1
            entry["closedPoints"] += ticket.points
        if flags.is_final_phase:
            entry["finalPhaseTickets"] += 1

    rollup = [
        {
            "name": name,
            "tickets": entry["tickets"],
            "closedTickets": entry["closedTickets"],
            "finalPhaseTickets": entry["finalPhaseTickets"],
            "storyPoints": _round1(entry["storyPoints"]),
            "closedPoints": _round1(entry["closedPoints"]),
        }
        for name, entry in totals.items()
    ]
    rollup.sort(key=lambda row: (-row["storyPoints"], row["name"]))
    return rollup


def sprint_metrics(sprint, now: datetime) -> dict:
    """Scope, success, status buckets and story-point burn for one sprint."""
    totals = resolve_totals(sprint)
    tickets = sprint.tickets
    flags = [_flags(ticket) for ticket in tickets]

    total = totals["totalTickets"]
    closed = totals["closedTickets"]
    bounce_back_tickets = sum(1 for ticket in tickets if ticket.bounce_back_count > 0)
    story_points_completed = sum(
        ticket.points for ticket, f in zip(tickets, flags) if f.is_strict_closed
    )

    days_left = None
    if sprint.end_date is not None:
        days_left = max(0, math.ceil((sprint.end_date - now).total_seconds() / 86400))

    return {
        "id": sprint.id,
        "name": sprint.name,
        "teamKey": team_key_of(sprint.name),
        "status": sprint.status,
        "startDate": format_date(sprint.start_date),
        "endDate": format_date(sprint.end_date),
        "daysLeft": days_left,
        "totalTickets": total,
        "plannedTickets": totals["plannedTickets"],
        "scopeTickets": totals["scopeTickets"],
        "closedTickets": closed,
        "successPercent": percent(closed, totals["scopeTickets"] or total),
        "devTickets": sum(1 for f in flags if f.is_dev),
        "qaTickets": sum(1 for f in flags if f.is_qa_active),
        "qaReadyTickets": sum(1 for f in flags if f.is_qa_ready),
        "finalPhaseTickets": sum(1 for f in flags if f.is_final_phase),
        "doneTickets": sum(1 for f in flags if f.is_strict_closed),
        "bounceBackTickets": bounce_back_tickets,
        "bounceBackPercent": percent(bounce_back_tickets, total),
        "storyPointsTotal": _round1(totals["storyPointsTotal"]),
        "storyPointsCompleted": _round1(story_points_completed),
        "assignees": assignee_rollup(tickets),
    }


def assignee_rankings(sprints) -> list:
    """Ticket counts per assignee across the given sprints.

    Unassigned tickets are grouped under "Unassigned".
    """
    counts = {}
    for sprint in sprints:
        for ticket in sprint.tickets:
            name = ticket.assignee_name or "Unassigned"
            flags = _flags(ticket)
            entry = counts.setdefault(name, {"total": 0, "closed": 0, "bounce": 0, "inProgress": 0})
            entry["total"] += 1
            if flags.is_strict_closed:
                entry["closed"] += 1
            if flags.is_dev:
                entry["inProgress"] += 1
            if ticket.bounce_back_count > 0:
                entry["bounce"] += 1

    rankings = [dict(name=name, **entry) for name, entry in counts.items()]
    rankings.sort(key=lambda row: (-row["total"], row["name"]))
    return rankings


def risk_score(bounce_backs: int, carryovers: int, final_phase_open: bool, past_due: bool) -> int:
    return (
        bounce_backs * 3
        + carryovers * 2
        + (2 if final_phase_open else 0)
        + (5 if past_due else 0)
    )


def risk_signals(sprints, now: datetime, top_n: int = RISK_TOP_N) -> dict:
    """Score every open ticket and return the riskiest ones.

    Delivered and cancelled tickets carry no risk. A ticket is only reported
    when at least one reason contributes to its score.
    """
    signals = []
    for sprint in sprints:
        team = team_key_of(sprint.name)
        past_due = sprint.end_date is not None and sprint.end_date < now

        for ticket in sprint.tickets:
            flags = _flags(ticket)
            if flags.is_strict_closed or flags.is_cancelled:
                continue

            final_phase_open = flags.is_final_phase
            reasons = []
            if ticket.bounce_back_count > 0:
                reasons.append("bounce")
            if ticket.carryover_count > 0:
                reasons.append("carryover")
            if final_phase_open:
                reasons.append("final phase")
            if past_due:
                reasons.append("past due")
            if not reasons:
                continue

            reference = ticket.created_at or ticket.updated_at
            age_days = hours_to_days(business_hours_between(reference, now)) if reference else None

            signals.append({
                "sprintId": sprint.id,
                "sprintName": sprint.name,
                "teamKey": team,
                "key": ticket.key,
                "summary": ticket.summary,
                "status": ticket.status,
                "assignee": ticket.assignee_name,
                "ageDays": age_days,
                "bounceBackCount": ticket.bounce_back_count,
                "carryoverCount": ticket.carryover_count,
                "riskScore": risk_score(
                    ticket.bounce_back_count, ticket.carryover_count, final_phase_open, past_due
                ),
                "reasons": reasons,
            })

    signals.sort(key=lambda s: (
        -s["riskScore"],
        -(s["ageDays"] if s["ageDays"] is not None else -1),
    ))

    per_sprint = Counter(signal["sprintId"] for signal in signals)
    by_sprint = [
        {
            "sprintId": sprint.id,
            "sprintName": sprint.name,
            "teamKey": team_key_of(sprint.name),
            "count": per_sprint[sprint.id],
        }
        for sprint in sprints
        if per_sprint[sprint.id]
    ]

    return {
        "top": signals[:top_n],
        "totalCount": len(signals),
        "bySprint": by_sprint,
    }


def _is_open_at(ticket, moment: datetime) -> bool:
    if ticket.created_at is None or ticket.created_at > moment:
        return False
    if ticket.closed_at is not None:
        return ticket.closed_at > moment
    flags = _flags(ticket)
    return not (flags.is_strict_closed or flags.is_cancelled)


def _age_summary(ages: list) -> tuple:
    if not ages:
        return 0, 0
    return _round1(_mean(ages)), _round1(max(ages))


def _collect_bugs(*pools) -> dict:
    # A bug can sit in several pools; the last sighting wins
    bugs = OrderedDict()
    for pool in pools:
        for sprint in pool:
            for ticket in sprint.tickets:
                if BUG_ISSUE_TYPE in (ticket.issue_type or "").lower():
                    bugs[ticket.key] = (ticket, team_key_of(sprint.name))
    return bugs


def bug_aging(pool_sprints, backlog_sprints, scoped_sprints, now: datetime) -> dict:
    """Bug inflow, outflow and age per sprint window and per team.

    Each sprint window runs from its start to its end, cut at ``now`` while
    the sprint is still active. Ages are in business days.
    """
    bugs = _collect_bugs(pool_sprints, backlog_sprints)

    by_sprint = []
    for sprint in scoped_sprints:
        if sprint.start_date is None:
            continue
        window_end = sprint.end_date or now
        if sprint.is_active:
            window_end = min(window_end, now)
        window_start = sprint.start_date
        team = team_key_of(sprint.name)
        team_bugs = [ticket for ticket, bug_team in bugs.values() if bug_team == team]

        created = [
            t for t in team_bugs
            if t.created_at is not None and window_start <= t.created_at <= window_end
        ]
        closed = [
            t for t in team_bugs
            if t.closed_at is not None and window_start <= t.closed_at <= window_end
        ]
        still_open = [t for t in team_bugs if _is_open_at(t, window_end)]

        open_avg, open_oldest = _age_summary(
            [business_days_between(t.created_at, window_end) for t in still_open]
        )
        closed_avg, closed_oldest = _age_summary(
            [business_days_between(t.created_at, t.closed_at) for t in closed if t.created_at]
        )

        by_sprint.append({
            "sprintId": sprint.id,
            "sprintName": sprint.name,
            "teamKey": team,
            "windowStart": format_date(window_start),
            "windowEnd": format_date(window_end),
            "created": len(created),
            "closed": len(closed),
            "open": len(still_open),
            "averageOpenAgeDays": open_avg,
            "oldestOpenAgeDays": open_oldest,
            "averageClosedAgeDays": closed_avg,
            "oldestClosedAgeDays": closed_oldest,
        })

    by_team = OrderedDict()
    for entry in by_sprint:
        team = entry["teamKey"]
        if team not in by_team:
            # scoped_sprints is newest first, so the first entry is the latest window
            by_team[team] = {
                "teamKey": team,
                "created": 0,
                "closed": 0,
                "open": entry["open"],
                "averageOpenAgeDays": entry["averageOpenAgeDays"],
                "oldestOpenAgeDays": entry["oldestOpenAgeDays"],
                "sprintCount": 0,
            }
        by_team[team]["created"] += entry["created"]
        by_team[team]["closed"] += entry["closed"]
        by_team[team]["sprintCount"] += 1

    open_now = [ticket for ticket, _ in bugs.values() if _is_open_at(ticket, now)]
    open_avg, open_oldest = _age_summary(
        [business_days_between(t.created_at, now) for t in open_now]
    )

    return {
        "totalOpen": len(open_now),
        "totalCreated": sum(entry["created"] for entry in by_sprint),
        "totalClosed": sum(entry["closed"] for entry in by_sprint),
        "averageOpenAgeDays": open_avg,
        "oldestOpenAgeDays": open_oldest,
        "bySprint": by_sprint,
        "byTeam": list(by_team.values()),
    }


def _itemized_by_assignee(snapshot) -> dict:
    """Points and hours per assignee from timed tickets inside the sprint window."""
    start, end = snapshot.start_date, snapshot.end_date
    itemized = {}
    if start is None or end is None:
        return itemized

    for row in snapshot.ticket_time_list():
        if not isinstance(row, dict):
            continue
        name = (row.get("assignee") or "").strip()
        dev_start = parse_date(row.get("devStart"))
        end_at = parse_date(row.get("endAt"))
        if not name or dev_start is None or end_at is None:
            continue
        if dev_start < start or end_at > end:
            continue
        entry = itemized.setdefault(name, {"points": 0.0, "hours": 0.0})
        entry["points"] += row.get("storyPoints") or 0
        entry["hours"] += row.get("workHours") or 0

    return itemized


def capacity(snapshots) -> dict:
    """Story points closed per business day, per assignee and team.

    Uses itemized ticket timing when a snapshot has it; otherwise spreads an
    assignee's closed points evenly over the sprint's business days.
    """
    by_sprint = []
    per_assignee = {}
    per_team = {}

    for snapshot in snapshots:
        sprint_days = business_days_between(snapshot.start_date, snapshot.end_date)
        itemized = _itemized_by_assignee(snapshot)
        team = team_key_of(snapshot.name)
        rows = []

        for assignee in snapshot.assignee_list():
            if not isinstance(assignee, dict):
                continue
            name = (assignee.get("name") or "").strip()
            if not name:
                continue

            timed = itemized.get(name)
            if timed and timed["hours"] > 0:
                points_per_day = timed["points"] / (timed["hours"] / HOURS_PER_BUSINESS_DAY)
                source = "itemized"
            elif sprint_days > 0:
                points_per_day = (assignee.get("closedPoints") or 0) / sprint_days
                source = "even"
            else:
                continue

            rows.append({"name": name, "pointsPerDay": round(points_per_day, 2), "source": source})
            per_assignee.setdefault(name, []).append(points_per_day)

        rows.sort(key=lambda row: (-row["pointsPerDay"], row["name"]))
        team_points_per_day = sum(row["pointsPerDay"] for row in rows)
        per_team.setdefault(team, []).append(team_points_per_day)
        by_sprint.append({
            "sprintId": snapshot.sprint_id,
            "sprintName": snapshot.name,
            "teamKey": team,
            "businessDays": sprint_days,
            "teamPointsPerDay": round(team_points_per_day, 2),
            "assignees": rows,
        })

    averages = [
        {"name": name, "pointsPerDay": round(_mean(values), 2), "sprintCount": len(values)}
        for name, values in per_assignee.items()
    ]
    averages.sort(key=lambda row: (-row["pointsPerDay"], row["name"]))

    teams = [
        {"teamKey": team, "pointsPerDay": round(_mean(values), 2), "sprintCount": len(values)}
        for team, values in per_team.items()
    ]
    teams.sort(key=lambda row: row["teamKey"])

    return {"bySprint": by_sprint, "averages": averages, "byTeam": teams}


def _previous_sprint(active, closed_sprints):
    team = team_key_of(active.name)
    candidates = [
        sprint for sprint in closed_sprints
        if sprint.id != active.id
        and team_key_of(sprint.name) == team
        and sprint.start_date is not None
        and sprint.end_date is not None
        and sprint.end_date <= active.start_date
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda sprint: sprint.end_date)


def _finished(tickets, cutoff: Optional[datetime] = None) -> tuple:
    count = 0
    points = 0.0
    for ticket in tickets:
        if not _flags(ticket).is_strict_closed:
            continue
        if cutoff is not None and (ticket.closed_at is None or ticket.closed_at > cutoff):
            continue
        count += 1
        points += ticket.points
    return count, points


def finished_comparison(active_sprints, closed_sprints, now: datetime) -> list:
    """Compare each active sprint with its team's previous sprint at the same day.

    The elapsed time of the active sprint is projected onto the previous
    sprint's start, so both are measured "at day N" rather than comparing a
    partial sprint with a finished one.
    """
    comparisons = []
    for active in active_sprints:
        if active.start_date is None:
            continue
        elapsed = max(now - active.start_date, timedelta(0))
        finished, finished_points = _finished(active.tickets)
        entry = {
            "sprintId": active.id,
            "sprintName": active.name,
            "teamKey": team_key_of(active.name),
            "elapsedDays": _round1(elapsed.total_seconds() / 86400),
            "finishedTickets": finished,
            "finishedPoints": _round1(finished_points),
            "previousSprintId": None,
            "previousSprintName": None,
            "previousCutoff": None,
            "previousFinishedTickets": None,
            "previousFinishedPoints": None,
            "ticketsDelta": None,
            "pointsDelta": None,
        }

        previous = _previous_sprint(active, closed_sprints)
        if previous is not None:
            cutoff = previous.start_date + elapsed
            prev_finished, prev_points = _finished(previous.tickets, cutoff)
            entry.update({
                "previousSprintId": previous.id,
                "previousSprintName": previous.name,
                "previousCutoff": format_date(cutoff),
                "previousFinishedTickets": prev_finished,
                "previousFinishedPoints": _round1(prev_points),
                "ticketsDelta": finished - prev_finished,
                "pointsDelta": _round1(finished_points - prev_points),
            })

        comparisons.append(entry)
    return comparisons


def story_point_delta(active_sprints, closed_sprints) -> dict:
    """Committed story points of active sprints vs each team's last closed sprint."""
    teams = OrderedDict()
    for sprint in active_sprints:
        team = team_key_of(sprint.name)
        entry = teams.setdefault(team, {"teamKey": team, "currentTotal": 0.0, "previousTotal": 0.0})
        entry["currentTotal"] += resolve_totals(sprint)["storyPointsTotal"]

    for team, entry in teams.items():
        previous = [s for s in closed_sprints if team_key_of(s.name) == team and s.end_date is not None]
        if previous:
            latest = max(previous, key=lambda s: s.end_date)
            entry["previousTotal"] = resolve_totals(latest)["storyPointsTotal"]

    by_team = []
    for entry in teams.values():
        by_team.append({
            "teamKey": entry["teamKey"],
            "currentTotal": _round1(entry["currentTotal"]),
            "previousTotal": _round1(entry["previousTotal"]),
            "delta": _round1(entry["currentTotal"] - entry["previousTotal"]),
        })

    current = sum(entry["currentTotal"] for entry in teams.values())
    previous_total = sum(entry["previousTotal"] for entry in teams.values())
    return {
        "currentTotal": _round1(current),
        "previousTotal": _round1(previous_total),
        "delta": _round1(current - previous_total),
        "byTeam": by_team,
    }


def delivery_entries(rows) -> list:
    """Aggregate timing rows into per-assignee delivery entries.

    Each row needs ``assignee``, ``workHours`` and ``carryover`` (bool).
    Rows without an assignee contribute nothing.
    """
    totals = {}
    for row in rows:
        name = (row.get("assignee") or "").strip()
        if not name:
            continue
        entry = totals.setdefault(name, {"ticketCount": 0, "totalHours": 0.0, "carryovers": 0})
        entry["ticketCount"] += 1
        entry["totalHours"] += row.get("workHours") or 0
        if row.get("carryover"):
            entry["carryovers"] += 1

    entries = [
        {
            "name": name,
            "ticketCount": entry["ticketCount"],
            "totalHours": _round1(entry["totalHours"]),
            "averageHours": _round1(entry["totalHours"] / entry["ticketCount"]) if entry["ticketCount"] else 0,
            "carryoverRate": percent(entry["carryovers"], entry["ticketCount"]),
        }
        for name, entry in totals.items()
    ]
    entries.sort(key=lambda row: (-row["ticketCount"], row["name"]))
    return entries
