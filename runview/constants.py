"""Shared constants for run projection."""

# Node id the editor assigns to the entry step of every new workflow.
FIRST_NODE_ID = "1"

# Payload keys historically used for the trigger step, tried in order.
TRIGGER_KEY_ALIASES = (
    "schedule",
    "newEmail",
    "new-email",
    "newRow",
    "new-row",
    "webhook",
    "trigger",
    "form",
    "runAgent",
    "run-agent",
    "http-webhook",
)

# Nodes closer than this on the Y axis are rendered as one row.
DEFAULT_ROW_TOLERANCE = 50.0

DEFAULT_TICK_INTERVAL = 0.1

DEFAULT_APPROVAL_SOURCE = "run-sidebar"

DEFAULT_APPROVAL_INSTRUCTIONS = (
    "Review the paused step, then approve or reject it to continue."
)
