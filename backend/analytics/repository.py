"""Sprint and ticket read providers."""

import json
import logging
import os

from analytics.models import Sprint
from analytics.team_scoping import recency_key

logger = logging.getLogger(__name__)


class InMemorySprintRepository:
    """Serves sprints (with their tickets) from memory.

    Anything exposing ``get_sprint`` and ``list_sprints`` can stand in for it.
    """

    def __init__(self, sprints=None):
        self._sprints = {sprint.id: sprint for sprint in (sprints or [])}

    def add(self, sprint: Sprint) -> None:
        self._sprints[sprint.id] = sprint

    def get_sprint(self, sprint_id):
        return self._sprints.get(str(sprint_id))

    def list_sprints(self, statuses=None) -> list:
        """Sprints in the given lifecycle states, most recent end date first."""
        wanted = {s.upper() for s in statuses} if statuses else None
        sprints = [
            sprint for sprint in self._sprints.values()
            if wanted is None or sprint.status in wanted
        ]
        return sorted(sprints, key=recency_key, reverse=True)


def load_sprints_file(path: str) -> InMemorySprintRepository:
    """Load a repository from a JSON file holding ``{"sprints": [...]}``.

    A missing or unreadable file yields an empty repository.
    """
    if not os.path.exists(path):
        logger.info(f"No sprint data file at {path}")
        return InMemorySprintRepository()

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Failed to load sprint data from {path}: {e}")
        return InMemorySprintRepository()

    records = data.get("sprints", []) if isinstance(data, dict) else data
    sprints = [Sprint.from_dict(record) for record in records]
    logger.info(f"Loaded {len(sprints)} sprints from {path}")
    return InMemorySprintRepository(sprints)
