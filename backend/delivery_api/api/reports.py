"""Sprint snapshot report endpoints."""

from flask import Blueprint, current_app, request, jsonify

from analytics.snapshot_manager import SnapshotManager
from delivery_api.api.metrics import get_changelog_provider, get_team_window

bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def get_snapshot_manager():
    return SnapshotManager(
        current_app.extensions["sprint_repository"],
        current_app.extensions["snapshot_store"],
    )


@bp.route("/sprints", methods=["GET"])
def list_sprint_reports():
    """List closed sprint snapshots, most recent first.

    Query params:
        - team_window: Optional number of snapshots kept per team
    """
    try:
        reports = get_snapshot_manager().list_reports(get_team_window())
        return jsonify({"data": {"snapshots": reports}})
    except Exception as e:
        current_app.logger.exception("Failed to load sprint reports")
        return jsonify({"error": str(e)}), 500


@bp.route("/sprints/<sprint_id>/snapshot", methods=["POST"])
def ensure_sprint_snapshot(sprint_id):
    """Create or refresh the snapshot of a closed sprint.

    Called by the sprint-closure event handler; safe to repeat.

    Optional JSON body:
        - totals: dict of totals that replace computed values

    Jira credentials in X-Jira-* headers enable delivery-time tables.
    """
    body = request.get_json(silent=True) or {}
    totals_override = body.get("totals")
    if totals_override is not None and not isinstance(totals_override, dict):
        return jsonify({"error": "totals must be an object"}), 400

    try:
        snapshot = get_snapshot_manager().ensure_snapshot(
            sprint_id,
            changelog_provider=get_changelog_provider(),
            totals_override=totals_override,
        )
    except Exception as e:
        current_app.logger.exception(f"Snapshot of sprint {sprint_id} failed")
        return jsonify({"error": str(e)}), 500

    if snapshot is None:
        return jsonify({"error": f"Sprint {sprint_id} not found"}), 404

    return jsonify({"data": snapshot.to_report()})
