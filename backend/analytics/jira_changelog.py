"""Changelog provider backed by the Jira REST API."""

import logging
from typing import Optional

import requests

from analytics.config import CHANGELOG_REQUEST_TIMEOUT
from analytics.models import ChangelogEvent, parse_date

logger = logging.getLogger(__name__)


class ChangelogFetchError(Exception):
    """A ticket's changelog could not be fetched or decoded."""


def histories_to_events(histories: list) -> list:
    """Flatten Jira changelog histories into ChangelogEvents.

    Items of one history share its timestamp and keep their order. Histories
    with an unparseable timestamp are skipped.
    """
    events = []
    for history in histories or []:
        timestamp = parse_date(history.get("created"))
        if timestamp is None:
            continue
        for item in history.get("items", []) or []:
            events.append(ChangelogEvent(
                timestamp=timestamp,
                field=(item.get("field") or "").lower(),
                from_value=item.get("fromString"),
                to_value=item.get("toString"),
            ))
    return events


class JiraChangelogProvider:
    """Fetches a single issue's changelog per call.

    Supports basic auth (email + API token) or a bearer token.
    """

    def __init__(self, server: str, token: str, email: Optional[str] = None,
                 timeout: float = CHANGELOG_REQUEST_TIMEOUT):
        self.server = server.rstrip("/")
        self.email = email
        self.token = token
        self.timeout = timeout

    def _request(self, endpoint: str, params: Optional[dict] = None):
        """Make authenticated request to Jira API."""
        headers = {"Accept": "application/json"}
        auth = None
        if self.email:
            auth = (self.email, self.token)
        else:
            headers["Authorization"] = f"Bearer {self.token}"

        response = requests.get(
            f"{self.server}{endpoint}",
            auth=auth,
            headers=headers,
            params=params,
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def get_changelog(self, issue_key: str) -> list:
        try:
            data = self._request(
                f"/rest/api/2/issue/{issue_key}",
                params={"expand": "changelog", "fields": "status"}
            )
        except requests.exceptions.Timeout as e:
            raise ChangelogFetchError(f"Timed out fetching changelog for {issue_key}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ChangelogFetchError(f"Failed to fetch changelog for {issue_key}: {e}") from e

        if not isinstance(data, dict):
            raise ChangelogFetchError(f"Unexpected changelog payload for {issue_key}")

        changelog = data.get("changelog") or {}
        histories = changelog.get("histories", []) if isinstance(changelog, dict) else []
        return histories_to_events(histories)
