"""Flask application factory."""

import json
import os
from flask import Flask
from flask_cors import CORS

from analytics.cache import ExpiringCache
from analytics.config import CLOSED_SPRINTS_PER_TEAM_LIMIT, METRICS_CACHE_TTL_SECONDS
from analytics.repository import load_sprints_file
from analytics.snapshot_store import JsonFileSnapshotStore

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "..", "config")


def load_analytics_config(app):
    """Load data file locations and the per-team sprint window from config."""
    config_path = os.path.join(CONFIG_DIR, "analytics-config.json")
    config = {}

    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                config = json.load(f)
            app.logger.info(f"Loaded analytics config from {config_path}")
        except (json.JSONDecodeError, IOError) as e:
            app.logger.warning(f"Failed to load analytics config: {e}")
            config = {}
    else:
        app.logger.info("No analytics-config.json found, using defaults")

    app.config.setdefault(
        "SPRINTS_FILE", os.path.join(CONFIG_DIR, config.get("sprintsFile", "sprints.json"))
    )
    app.config.setdefault(
        "SNAPSHOTS_FILE", os.path.join(CONFIG_DIR, config.get("snapshotsFile", "snapshots.json"))
    )
    app.config.setdefault(
        "CLOSED_SPRINTS_PER_TEAM", int(config.get("closedSprintsPerTeam", CLOSED_SPRINTS_PER_TEAM_LIMIT))
    )


def create_app(repository=None, snapshot_store=None, cache=None):
    """Create and configure the Flask application.

    Collaborators default to the JSON files named in analytics-config.json and
    a process-wide expiring cache; tests pass their own.
    """
    app = Flask(__name__)

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": [
                "Content-Type",
                "X-Jira-Token", "X-Jira-Email", "X-Jira-Server",
                "X-Requested-By"
            ]
        }
    })

    load_analytics_config(app)

    app.extensions["sprint_repository"] = (
        repository if repository is not None else load_sprints_file(app.config["SPRINTS_FILE"])
    )
    app.extensions["snapshot_store"] = (
        snapshot_store if snapshot_store is not None
        else JsonFileSnapshotStore(app.config["SNAPSHOTS_FILE"])
    )
    app.extensions["metrics_cache"] = (
        cache if cache is not None else ExpiringCache(default_ttl=METRICS_CACHE_TTL_SECONDS)
    )

    # Register blueprints
    from delivery_api.api import metrics, reports
    app.register_blueprint(metrics.bp)
    app.register_blueprint(reports.bp)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
