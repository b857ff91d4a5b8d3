import logging
import re
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import QuerySet

from . import cloud, ssh_keys
from .errors import DuplicateToolbox, InvalidTransition, ProviderError, ToolboxConfigError, ToolboxError
from .jobs import schedule_reconcile
from .lifecycle import (
    DELETION_STATES,
    DEPROVISIONABLE_STATES,
    REPLACEABLE_STATES,
    apply_transition,
    locked_record,
    transition,
)
from .models import SSHKeyPair, ToolboxRecord
from .remote_exec import execute
from .user_data import BOOTSTRAP_LOG, build_bootstrap_script


logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,119}$")


def _provider_error_message(exc: ProviderError) -> str:
    return f"{exc} [{exc.code or 'provider'}] {exc.detail}"[:2000]


def _validate_config(config: Dict[str, Any]) -> Tuple[str, str, str, str]:
    name = str(config.get("name") or "").strip()
    if not NAME_RE.match(name):
        raise ToolboxConfigError("name is required and may only contain letters, digits, '.', '_' or '-'")
    region = str(config.get("region") or "").strip()
    if region not in settings.TOOLBOX_ALLOWED_REGIONS:
        raise ToolboxConfigError(f"region must be one of: {', '.join(settings.TOOLBOX_ALLOWED_REGIONS)}")
    size_class = str(config.get("size_class") or config.get("size") or "").strip()
    instance_type = settings.TOOLBOX_SIZE_CLASSES.get(size_class)
    if not instance_type:
        raise ToolboxConfigError(f"size_class must be one of: {', '.join(sorted(settings.TOOLBOX_SIZE_CLASSES))}")
    if not settings.TOOLBOX_HOST_IMAGE:
        raise ToolboxConfigError("host image not configured (TOOLYARD_HOST_AMI)")
    return name, region, size_class, instance_type


def _reject_duplicate(owner, name: str) -> None:
    existing = ToolboxRecord.objects.filter(owner=owner, name=name).only("status").first()
    if existing is not None and existing.status not in REPLACEABLE_STATES:
        raise DuplicateToolbox(f"a toolbox named {name!r} already exists ({existing.status})")


def _claim_record(owner, name: str, region: str, size_class: str, key: Optional[SSHKeyPair]) -> ToolboxRecord:
    with transaction.atomic():
        existing = ToolboxRecord.objects.select_for_update().filter(owner=owner, name=name).first()
        if existing is not None:
            if existing.status not in REPLACEABLE_STATES:
                raise DuplicateToolbox(f"a toolbox named {name!r} already exists ({existing.status})")
            logger.info("owner %s: replacing deprovisioned toolbox %s (%s)", owner.pk, existing.id, name)
            existing.delete()
        try:
            with transaction.atomic():
                record = ToolboxRecord.objects.create(
                    owner=owner,
                    name=name,
                    region=region,
                    size_class=size_class,
                    ssh_key=key,
                    status="inactive",
                )
        except IntegrityError as exc:
            raise DuplicateToolbox(f"a toolbox named {name!r} already exists") from exc
        return apply_transition(record, "pending_creation", message="provision requested")


def provision(owner, config: Dict[str, Any]) -> ToolboxRecord:
    """Request a new toolbox host and return once the provider acknowledged it.

    Never blocks on the host becoming ready; the polling loop takes over from
    ``creating``. Host creation is not retried here.
    """
    if owner is None or not getattr(owner, "is_authenticated", False):
        raise ToolboxConfigError("an authenticated owner is required")
    name, region, size_class, instance_type = _validate_config(config or {})
    _reject_duplicate(owner, name)

    key_ids = ssh_keys.deployment_keys(owner, region)
    key = SSHKeyPair.objects.filter(owner=owner).first()
    record = _claim_record(owner, name, region, size_class, key)

    user_data = build_bootstrap_script(
        agent_token=record.agent_auth_token,
        agent_image=settings.TOOLBOX_AGENT_IMAGE,
        agent_port=settings.TOOLBOX_AGENT_PORT,
    )
    try:
        host = cloud.create_host(
            region=region,
            instance_type=instance_type,
            image_id=settings.TOOLBOX_HOST_IMAGE,
            key_names=key_ids,
            user_data=user_data,
            name=f"toolbox-{name}",
            tags={"toolyard:toolbox_id": str(record.id), "toolyard:owner_id": str(owner.pk)},
        )
    except ProviderError as exc:
        logger.warning("toolbox %s: host request rejected (%s): %s", record.id, exc.code, exc.detail)
        transition(
            record.id,
            "error_creation",
            expected=["pending_creation"],
            message=str(exc),
            error_message=_provider_error_message(exc),
        )
        raise

    record = transition(
        record.id,
        "creating",
        expected=["pending_creation"],
        message="host requested",
        provider_host_id=host.host_id,
        host_details_json={"state": host.state, "public_address": host.public_address, "instance_type": instance_type},
    )
    schedule_reconcile(record.id)
    return record


def deprovision(toolbox_id) -> ToolboxRecord:
    """Delete the toolbox host. A no-op for records already deprovisioned or on the way there."""
    with locked_record(toolbox_id) as record:
        if record.status == "deprovisioned" or record.status in DELETION_STATES:
            return record
        if record.status not in DEPROVISIONABLE_STATES:
            raise InvalidTransition(f"toolbox cannot be deprovisioned while {record.status}")
        apply_transition(record, "pending_deprovision", message="deprovision requested")

    if not record.provider_host_id:
        with locked_record(toolbox_id) as locked:
            locked.tool_instances.all().delete()
            return apply_transition(locked, "deprovisioned", message="no host to delete")

    try:
        cloud.delete_host(record.region, record.provider_host_id)
    except ProviderError as exc:
        logger.warning("toolbox %s: host delete failed (%s): %s", record.id, exc.code, exc.detail)
        transition(
            record.id,
            "error_deprovisioning",
            expected=["pending_deprovision"],
            message=str(exc),
            error_message=_provider_error_message(exc),
        )
        raise

    record = transition(record.id, "deprovisioning", expected=["pending_deprovision"], message="host deletion requested")
    schedule_reconcile(record.id)
    return record


def list_toolboxes(owner, *, changed_since=None, include_deprovisioned: bool = True) -> QuerySet:
    toolboxes = ToolboxRecord.objects.all() if owner is None else ToolboxRecord.objects.filter(owner=owner)
    if changed_since is not None:
        toolboxes = toolboxes.filter(updated_at__gt=changed_since)
    if not include_deprovisioned:
        toolboxes = toolboxes.exclude(status="deprovisioned")
    return toolboxes.prefetch_related("tool_instances").order_by("-created_at")


def fetch_bootstrap_log(toolbox_id, tail: int = 200) -> Dict[str, Any]:
    record = ToolboxRecord.objects.select_related("ssh_key").get(id=toolbox_id)
    address = record.reachable_address
    if not address:
        raise InvalidTransition("toolbox host has no address yet")
    if record.ssh_key is None:
        raise ToolboxError("toolbox has no SSH key")
    tail = max(1, min(int(tail), 2000))
    result = execute(
        address,
        f"sudo tail -n {tail} {BOOTSTRAP_LOG}",
        private_key_pem=ssh_keys.load_private_key(record.ssh_key),
    )
    return {
        "status": "success" if result.success else "failed",
        "stdout": result.stdout,
        "stderr": result.stderr,
    }
