"""Team keys and per-team recency windows.

Cross-sprint rollups only ever see the N most recent sprints per team, so a
team with a faster sprint cadence cannot dominate the averages.
"""

import re
from datetime import datetime

from analytics.config import DEFAULT_TEAM_KEY

_LEADING_TOKEN = re.compile(r"^[A-Za-z0-9]+")


def team_key_of(sprint_name: str) -> str:
    """Derive a team key from a sprint name, e.g. "ABC-123 Sprint 4" -> "ABC"."""
    trimmed = (sprint_name or "").strip()
    if not trimmed:
        return DEFAULT_TEAM_KEY
    match = _LEADING_TOKEN.match(trimmed)
    return match.group(0).upper() if match else trimmed.upper()


def _end_date(item):
    return getattr(item, "end_date", None)


def recency_key(item):
    # Items without an end date sort after every dated item
    end = _end_date(item)
    return (end is not None, end or datetime.min)


def limit_per_team(items, limit: int, name_of=lambda item: item.name) -> list:
    """Keep the ``limit`` most recent items per team key, newest first."""
    if limit <= 0:
        return []

    ordered = sorted(items, key=recency_key, reverse=True)
    counts = {}
    kept = []
    for item in ordered:
        key = team_key_of(name_of(item))
        if counts.get(key, 0) >= limit:
            continue
        counts[key] = counts.get(key, 0) + 1
        kept.append(item)

    return sorted(kept, key=recency_key, reverse=True)
