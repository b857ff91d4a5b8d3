"""Per-toolbox reconciliation against the Agent and the cloud provider.

A tick does its network I/O without holding any lock, then re-reads the record
under ``select_for_update`` and applies the outcome only if the status it
observed is still current. Ticks for one toolbox are single-flight through an
atomic ``cache.add`` guard.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from . import cloud
from .agent_client import AgentClient
from .errors import AgentError, InvalidTransition, ProviderError
from .lifecycle import DELETION_STATES, POLLED_STATES, apply_transition, locked_record
from .models import ToolboxRecord
from .tools import sync_tool_instances


logger = logging.getLogger(__name__)

GUARD_TTL_SECONDS = 120
RUNNING_STATES = ("active", "unresponsive", "scaling")


@dataclass
class TickResult:
    toolbox_id: str
    status: str
    contacted: bool = False
    changed: bool = False
    skipped: bool = False
    error: str = ""

    @property
    def keep_polling(self) -> bool:
        return self.skipped or self.status in POLLED_STATES or self.status in ("pending_creation", "pending_deprovision")


def _guard_key(toolbox_id) -> str:
    return f"toolbox-reconcile:{toolbox_id}"


def _ceiling() -> timedelta:
    return timedelta(seconds=int(settings.TOOLBOX_PROVISIONING_CEILING_SECONDS))


def past_ceiling(record: ToolboxRecord, now=None) -> bool:
    now = now or timezone.now()
    start = record.status_changed_at
    if record.last_heartbeat_at and record.last_heartbeat_at > start:
        start = record.last_heartbeat_at
    return now - start > _ceiling()


def tick(toolbox_id) -> TickResult:
    key = _guard_key(toolbox_id)
    if not cache.add(key, "1", timeout=GUARD_TTL_SECONDS):
        record = ToolboxRecord.objects.filter(id=toolbox_id).only("status").first()
        return TickResult(str(toolbox_id), record.status if record else "missing", skipped=True)
    try:
        return _reconcile(toolbox_id)
    finally:
        cache.delete(key)


def refresh_status(toolbox_id) -> ToolboxRecord:
    """On-demand poll for one toolbox. Not allowed while it is being deleted."""
    record = ToolboxRecord.objects.get(id=toolbox_id)
    if record.status in DELETION_STATES:
        raise InvalidTransition("toolbox is being deleted; refresh is unavailable")
    tick(toolbox_id)
    return ToolboxRecord.objects.get(id=toolbox_id)


def _reconcile(toolbox_id) -> TickResult:
    record = ToolboxRecord.objects.filter(id=toolbox_id).first()
    if record is None:
        return TickResult(str(toolbox_id), "missing")
    if record.status == "creating":
        return _reconcile_creating(record)
    if record.status in RUNNING_STATES:
        return _reconcile_running(record)
    if record.status == "deprovisioning":
        return _reconcile_deprovisioning(record)
    if record.status in ("pending_creation", "pending_deprovision"):
        return _expire_pending(record)
    return TickResult(str(record.id), record.status)


def _heartbeat_fields(record: ToolboxRecord, report: Dict[str, Any]) -> list:
    record.last_heartbeat_at = timezone.now()
    record.agent_version = str(report.get("version") or "")[:64]
    record.health_json = report.get("metrics") or {}
    sync_tool_instances(record, report.get("tools") or [])
    return ["last_heartbeat_at", "agent_version", "health_json"]


def _poll_agent(record: ToolboxRecord, address: Optional[str]):
    if not address:
        return None, "no address yet"
    try:
        return AgentClient.for_toolbox(record, address).status(), ""
    except AgentError as exc:
        logger.info("toolbox %s: agent poll failed: %s", record.id, exc)
        return None, exc.detail


def _reconcile_creating(record: ToolboxRecord) -> TickResult:
    host = None
    host_error = ""
    if record.provider_host_id:
        try:
            host = cloud.describe_host(record.region, record.provider_host_id)
        except ProviderError as exc:
            logger.warning("toolbox %s: describe host failed: %s", record.id, exc.detail)
            host_error = exc.detail
    address = (host.public_address if host else None) or record.reachable_address
    report, agent_error = (None, "") if host and host.state in ("shutting-down", "terminated") else _poll_agent(record, address)

    with locked_record(record.id) as locked:
        if locked.status != "creating":
            return TickResult(str(locked.id), locked.status)
        fields = []
        if host is not None:
            locked.host_details_json = {
                **(locked.host_details_json or {}),
                "state": host.state,
                "public_address": host.public_address,
                "private_address": host.private_address,
                **{key: value for key, value in host.details.items() if value},
            }
            fields.append("host_details_json")
        if report is not None:
            locked.public_address = address
            fields += ["public_address", *_heartbeat_fields(locked, report)]
            apply_transition(locked, "active", message="first heartbeat from agent", error_message="", fields=fields)
            return TickResult(str(locked.id), locked.status, contacted=True, changed=True)
        if host is not None and host.state in ("shutting-down", "terminated"):
            reason = host.details.get("state_reason") or host.state
            apply_transition(
                locked,
                "error_provisioning",
                message="host stopped during provisioning",
                error_message=f"Host {host.host_id} entered {host.state} during provisioning: {reason}",
                fields=fields,
            )
            return TickResult(str(locked.id), locked.status, changed=True, error=host.state)
        if past_ceiling(locked):
            detail = agent_error or host_error or "no response"
            apply_transition(
                locked,
                "error_provisioning",
                message="provisioning ceiling reached",
                error_message=(
                    f"Agent did not respond within {settings.TOOLBOX_PROVISIONING_CEILING_SECONDS}s "
                    f"of host creation; last error: {detail}"
                ),
                fields=fields,
            )
            return TickResult(str(locked.id), locked.status, changed=True, error=detail)
        if fields:
            locked.save(update_fields=[*fields, "updated_at"])
        return TickResult(str(locked.id), locked.status, error=agent_error or host_error)


def _reconcile_running(record: ToolboxRecord) -> TickResult:
    report, agent_error = _poll_agent(record, record.reachable_address)

    with locked_record(record.id) as locked:
        if locked.status not in RUNNING_STATES:
            return TickResult(str(locked.id), locked.status)
        if report is not None:
            fields = _heartbeat_fields(locked, report)
            if locked.status == "unresponsive":
                apply_transition(locked, "active", message="heartbeat recovered", error_message="", fields=fields)
                return TickResult(str(locked.id), locked.status, contacted=True, changed=True)
            locked.save(update_fields=[*fields, "updated_at"])
            return TickResult(str(locked.id), locked.status, contacted=True)
        if locked.status == "active" and past_ceiling(locked):
            apply_transition(
                locked,
                "unresponsive",
                message="heartbeat lost",
                error_message=f"No heartbeat for over {settings.TOOLBOX_PROVISIONING_CEILING_SECONDS}s; last error: {agent_error}",
            )
            return TickResult(str(locked.id), locked.status, changed=True, error=agent_error)
        return TickResult(str(locked.id), locked.status, error=agent_error)


def _reconcile_deprovisioning(record: ToolboxRecord) -> TickResult:
    host = None
    provider_error = ""
    if record.provider_host_id:
        try:
            host = cloud.describe_host(record.region, record.provider_host_id)
        except ProviderError as exc:
            logger.warning("toolbox %s: describe host failed: %s", record.id, exc.detail)
            provider_error = exc.detail
    gone = not record.provider_host_id or (not provider_error and (host is None or host.state == "terminated"))

    with locked_record(record.id) as locked:
        if locked.status != "deprovisioning":
            return TickResult(str(locked.id), locked.status)
        if gone:
            locked.tool_instances.all().delete()
            apply_transition(locked, "deprovisioned", message="provider confirmed host deletion")
            return TickResult(str(locked.id), locked.status, changed=True)
        if past_ceiling(locked):
            state = host.state if host else "unknown"
            apply_transition(
                locked,
                "error_deprovisioning",
                message="host deletion not confirmed",
                error_message=(
                    f"Host {locked.provider_host_id} still {state} after "
                    f"{settings.TOOLBOX_PROVISIONING_CEILING_SECONDS}s; {provider_error or 'check the provider console'}"
                ),
            )
            return TickResult(str(locked.id), locked.status, changed=True, error=state)
        return TickResult(str(locked.id), locked.status, error=provider_error)


def _expire_pending(record: ToolboxRecord) -> TickResult:
    # A pending state only outlives the ceiling if the request that entered it died mid-flight.
    with locked_record(record.id) as locked:
        if locked.status not in ("pending_creation", "pending_deprovision") or not past_ceiling(locked):
            return TickResult(str(locked.id), locked.status)
        target = "error_creation" if locked.status == "pending_creation" else "error_deprovisioning"
        apply_transition(
            locked,
            target,
            message="request did not complete",
            error_message=f"Request stalled in {locked.status}; the provider call may not have completed.",
        )
        return TickResult(str(locked.id), locked.status, changed=True)
