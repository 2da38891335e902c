"""Delivery metrics API endpoints."""

from flask import Blueprint, current_app, request, jsonify

from analytics.delivery_metrics import DeliveryMetricsService
from analytics.jira_changelog import JiraChangelogProvider

bp = Blueprint("metrics", __name__, url_prefix="/api/metrics")


def get_jira_credentials():
    """Extract Jira credentials from request headers."""
    server = request.headers.get("X-Jira-Server", "").rstrip("/")
    email = request.headers.get("X-Jira-Email")
    token = request.headers.get("X-Jira-Token")

    if not all([server, token]):
        return None, None, None

    return server, email, token


def get_changelog_provider():
    """Build a changelog provider from the request's Jira credentials, if any."""
    server, email, token = get_jira_credentials()
    if not server:
        return None
    return JiraChangelogProvider(server, token, email=email)


def get_team_window():
    """Get the per-team sprint window from query params.

    Query params:
        - team_window: Most recent sprints kept per team (e.g., 10)

    Returns:
        int (configured default when absent or invalid)
    """
    default = current_app.config["CLOSED_SPRINTS_PER_TEAM"]
    team_window = request.args.get("team_window")
    if team_window:
        try:
            value = int(team_window)
        except ValueError:
            return default
        return value if value > 0 else default
    return default


def get_flag(name):
    return request.args.get(name, "").lower() in ("1", "true", "yes")


@bp.route("/delivery", methods=["GET"])
def get_delivery_metrics():
    """Get all delivery metrics for dashboard display.

    Query params:
        - team_window: Optional number of sprints per team to include
        - include_delivery_times: "1" to mine changelogs for cycle times
          (requires X-Jira-* headers)

    Returns sprint metrics, risk signals, bug aging, story point deltas,
    assignee rankings, capacity and optional delivery-time tables.
    """
    include_delivery_times = get_flag("include_delivery_times")
    provider = get_changelog_provider() if include_delivery_times else None

    if include_delivery_times and provider is None:
        return jsonify({"error": "Delivery times require Jira credentials in headers"}), 401

    try:
        service = DeliveryMetricsService(
            current_app.extensions["sprint_repository"],
            snapshot_store=current_app.extensions["snapshot_store"],
            changelog_provider=provider,
            cache=current_app.extensions["metrics_cache"],
        )
        data = service.get_all_metrics(
            team_window=get_team_window(),
            include_delivery_times=include_delivery_times,
            requester=request.headers.get("X-Jira-Email") or request.headers.get("X-Requested-By"),
        )
        return jsonify({"data": data})
    except Exception as e:
        current_app.logger.exception("Delivery metrics computation failed")
        return jsonify({"error": str(e)}), 500
