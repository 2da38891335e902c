"""Engine defaults and status keyword tables.

Statuses come from the tracker as free text, so every classification is a
case-insensitive substring match against one of these tables.
"""

DEFAULT_TEAM_KEY = "TEAM"

HOURS_PER_BUSINESS_DAY = 8

# Most recent closed sprints kept per team before any cross-sprint rollup
CLOSED_SPRINTS_PER_TEAM_LIMIT = 10

METRICS_CACHE_TTL_SECONDS = 30

# Upper bound on concurrent changelog fetches against the tracker
CHANGELOG_MAX_WORKERS = 8
CHANGELOG_REQUEST_TIMEOUT = 30

RISK_TOP_N = 8

DEV_STATUSES = ("in progress", "in development", "in refinement")
QA_STATUSES = ("in qa",)
QA_READY_STATUSES = (
    "ready for release",
    "awaiting approval",
    "waiting for approval",
    "in release",
)
CLOSED_STATUSES = ("closed", "done")
CANCELLED_STATUSES = ("cancelled", "canceled")

# A move out of one of these back into development is a bounce-back
BOUNCE_FROM_STATUSES = ("in qa", "awaiting approval")

# End of the cycle window: work handed to release or closed
DELIVERY_END_STATUSES = QA_READY_STATUSES + CLOSED_STATUSES + ("resolved",)

BUG_ISSUE_TYPE = "bug"
