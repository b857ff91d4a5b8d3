import logging
import re
from typing import Any, Dict, Iterable, Optional

from django.utils import timezone

from .agent_client import AgentClient
from .errors import InvalidTransition, ToolboxConfigError, ToolNotFound
from .models import ToolboxRecord, ToolInstance


logger = logging.getLogger(__name__)

INSTANCE_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_.-]{0,62}$")

RUNTIME_STATUS_MAP = {
    "created": "created",
    "running": "running",
    "restarting": "running",
    "exited": "stopped",
    "paused": "stopped",
    "dead": "stopped",
    "removing": "removed",
}


def map_runtime_status(value: Optional[str]) -> str:
    return RUNTIME_STATUS_MAP.get(str(value or "").strip().lower(), "error")


def apply_tool_report(toolbox: ToolboxRecord, item: Dict[str, Any]) -> ToolInstance:
    status = map_runtime_status(item.get("status"))
    defaults = {
        "status": status,
        "port_bindings": item.get("ports") or {},
        "last_reported_at": timezone.now(),
        # A container that never started has no id worth tracking yet.
        "container_id": item.get("container_id") if status != "created" else None,
    }
    if item.get("image"):
        defaults["image_reference"] = item["image"]
    instance, _ = ToolInstance.objects.update_or_create(
        toolbox=toolbox,
        instance_name=item["instance_name"],
        defaults=defaults,
    )
    return instance


def sync_tool_instances(toolbox: ToolboxRecord, items: Iterable[Dict[str, Any]]) -> None:
    """Make the stored rows match the Agent's list exactly."""
    reported = {}
    for item in items or []:
        name = item.get("instance_name")
        if name:
            reported[name] = item
    for item in reported.values():
        apply_tool_report(toolbox, item)
    stale = toolbox.tool_instances.exclude(instance_name__in=list(reported))
    removed = stale.count()
    if removed:
        stale.delete()
        logger.info("toolbox %s: dropped %s tool instance(s) no longer reported", toolbox.id, removed)


def _active_toolbox(toolbox_id) -> ToolboxRecord:
    record = ToolboxRecord.objects.get(id=toolbox_id)
    if record.status != "active":
        raise InvalidTransition(f"tools can only be managed on an active toolbox (currently {record.status})")
    return record


def _tracked_instance(record: ToolboxRecord, instance_name: str) -> ToolInstance:
    instance = record.tool_instances.filter(instance_name=instance_name).first()
    if instance is None:
        raise ToolNotFound(f"tool not found on toolbox: {instance_name}", status_code=404)
    return instance


def deploy_tool(
    toolbox_id,
    instance_name: str,
    image_reference: str,
    *,
    env: Optional[Dict[str, str]] = None,
    port_bindings: Optional[Dict[str, Any]] = None,
) -> ToolInstance:
    instance_name = (instance_name or "").strip()
    if not INSTANCE_NAME_RE.match(instance_name):
        raise ToolboxConfigError("instance_name must be lowercase letters, digits, '.', '_' or '-'")
    if not (image_reference or "").strip():
        raise ToolboxConfigError("image_reference is required")
    record = _active_toolbox(toolbox_id)
    item = AgentClient.for_toolbox(record).deploy_tool(
        instance_name,
        image_reference.strip(),
        env=env,
        port_bindings=port_bindings,
    )
    instance = apply_tool_report(record, item)
    logger.info("toolbox %s: deployed %s (%s)", record.id, instance_name, instance.status)
    return instance


def _forget(record: ToolboxRecord, instance: ToolInstance) -> None:
    logger.info("toolbox %s: agent no longer knows %s", record.id, instance.instance_name)
    instance.delete()


def start_tool(toolbox_id, instance_name: str) -> ToolInstance:
    record = _active_toolbox(toolbox_id)
    instance = _tracked_instance(record, instance_name)
    if instance.status not in ("stopped", "created"):
        raise InvalidTransition(f"tool must be stopped to start (currently {instance.status})")
    try:
        item = AgentClient.for_toolbox(record).start_tool(instance_name)
    except ToolNotFound:
        _forget(record, instance)
        raise
    return apply_tool_report(record, item)


def stop_tool(toolbox_id, instance_name: str) -> ToolInstance:
    record = _active_toolbox(toolbox_id)
    instance = _tracked_instance(record, instance_name)
    if instance.status != "running":
        raise InvalidTransition(f"tool must be running to stop (currently {instance.status})")
    try:
        item = AgentClient.for_toolbox(record).stop_tool(instance_name)
    except ToolNotFound:
        _forget(record, instance)
        raise
    return apply_tool_report(record, item)


def remove_tool(toolbox_id, instance_name: str) -> ToolInstance:
    record = _active_toolbox(toolbox_id)
    instance = _tracked_instance(record, instance_name)
    try:
        AgentClient.for_toolbox(record).remove_tool(instance_name)
    except ToolNotFound:
        logger.info("toolbox %s: %s was already gone", record.id, instance_name)
    instance.delete()
    instance.status = "removed"
    return instance
