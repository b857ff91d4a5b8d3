"""Phase-based progress for toolbox status displays.

Progress is a fixed lookup from the stored status; nothing here depends on a
client-side timer, so re-rendering never moves the displayed phase.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.utils import timezone

from .errors import ToolboxError
from .lifecycle import IN_FLIGHT_STATES


@dataclass(frozen=True)
class Phase:
    phase: str
    label: str
    percent: int
    category: str
    message: str
    next_action: Optional[str] = None


PHASES: Dict[str, Phase] = {
    "inactive": Phase("not_started", "Not started", 0, "setting_up", "This toolbox has not been started.", "provision"),
    "pending_creation": Phase("requesting", "Requesting a server", 10, "setting_up", "Still setting up."),
    "creating": Phase(
        "installing", "Installing toolbox software", 50, "setting_up", "Still setting up. This usually takes a few minutes."
    ),
    "awaiting_heartbeat": Phase("connecting", "Waiting for the toolbox to check in", 85, "setting_up", "Still setting up."),
    "active": Phase("ready", "Ready", 100, "ready", "Your toolbox is ready."),
    "scaling": Phase("resizing", "Resizing", 100, "setting_up", "Your toolbox is being resized."),
    "unresponsive": Phase(
        "unreachable", "Not responding", 100, "temporary_issue", "Temporary service issue: the toolbox is not responding.", "refresh"
    ),
    "error_creation": Phase("failed", "Could not create", 0, "failed", "We couldn't create your toolbox.", "retry"),
    "error_provisioning": Phase(
        "failed", "Setup did not finish", 0, "failed", "Your toolbox did not finish setting up.", "retry"
    ),
    "pending_deprovision": Phase("removing", "Removal requested", 20, "removing", "Removing your toolbox."),
    "deprovisioning": Phase("removing", "Removing server", 60, "removing", "Removing your toolbox."),
    "deprovisioned": Phase("removed", "Removed", 100, "removed", "This toolbox has been removed.", "provision"),
    "error_deprovisioning": Phase(
        "failed",
        "Removal needs attention",
        60,
        "needs_operator",
        "We couldn't confirm the server was removed. An operator needs to check it.",
        "contact_support",
    ),
}

TEMPORARY_ISSUE_MESSAGE = "Temporary service issue. Please try again shortly."


def is_stalled(record, now=None) -> bool:
    if record.status not in IN_FLIGHT_STATES:
        return False
    now = now or timezone.now()
    return now - record.status_changed_at > timedelta(seconds=int(settings.TOOLBOX_PROVISIONING_CEILING_SECONDS))


def describe(record, now=None) -> Dict[str, Any]:
    phase = PHASES.get(record.status) or PHASES["inactive"]
    payload = {
        "status": record.status,
        "phase": phase.phase,
        "label": phase.label,
        "percent": phase.percent,
        "stalled": False,
        "category": phase.category,
        "message": phase.message,
        "next_action": phase.next_action,
    }
    if is_stalled(record, now):
        payload.update(
            {
                "stalled": True,
                "category": "temporary_issue",
                "message": "This is taking longer than expected.",
                "next_action": "refresh",
            }
        )
    return payload


def user_message(exc: ToolboxError) -> str:
    """Plain-language text for an error; configuration and provider messages are already sanitized."""
    if exc.user_category in ("invalid_request", "provider_failure"):
        return str(exc)
    return TEMPORARY_ISSUE_MESSAGE
