import logging
from contextlib import contextmanager
from typing import Dict, FrozenSet, Iterable, Iterator, Optional

from django.db import transaction
from django.utils import timezone

from .errors import InvalidTransition
from .models import ToolboxRecord
from .signals import toolbox_changed


logger = logging.getLogger(__name__)

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "inactive": frozenset({"pending_creation"}),
    "pending_creation": frozenset({"creating", "error_creation"}),
    "creating": frozenset({"active", "error_provisioning", "error_creation"}),
    "active": frozenset({"unresponsive", "scaling", "pending_deprovision"}),
    "unresponsive": frozenset({"active", "pending_deprovision"}),
    "scaling": frozenset({"active", "pending_deprovision"}),
    "awaiting_heartbeat": frozenset(),
    "error_creation": frozenset({"pending_deprovision"}),
    "error_provisioning": frozenset({"pending_deprovision"}),
    "pending_deprovision": frozenset({"deprovisioning", "deprovisioned", "error_deprovisioning"}),
    "deprovisioning": frozenset({"deprovisioned", "error_deprovisioning"}),
    "deprovisioned": frozenset(),
    "error_deprovisioning": frozenset({"pending_deprovision"}),
}

# States the background loop keeps polling.
POLLED_STATES = frozenset({"creating", "active", "unresponsive", "scaling", "deprovisioning"})
# States measured against the provisioning ceiling.
IN_FLIGHT_STATES = frozenset({"pending_creation", "creating", "pending_deprovision", "deprovisioning"})
DEPROVISIONABLE_STATES = frozenset(
    {"active", "unresponsive", "scaling", "error_creation", "error_provisioning", "error_deprovisioning"}
)
DELETION_STATES = frozenset({"pending_deprovision", "deprovisioning"})
# Records in these states may be replaced by a new provision with the same name.
REPLACEABLE_STATES = frozenset({"deprovisioned"})


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


@contextmanager
def locked_record(toolbox_id) -> Iterator[ToolboxRecord]:
    """Yield the record under a row lock for the duration of one transaction."""
    with transaction.atomic():
        yield ToolboxRecord.objects.select_for_update().get(id=toolbox_id)


def apply_transition(
    record: ToolboxRecord,
    to_status: str,
    *,
    message: str = "",
    error_message: Optional[str] = None,
    fields: Iterable[str] = (),
) -> ToolboxRecord:
    """Move a locked record along the state graph and persist it.

    ``fields`` names any extra attributes the caller already set on ``record``.
    """
    from_status = record.status
    if not can_transition(from_status, to_status):
        raise InvalidTransition(f"cannot move toolbox from {from_status} to {to_status}")
    record.status = to_status
    record.status_changed_at = timezone.now()
    update_fields = {"status", "status_changed_at", "updated_at", *fields}
    if error_message is not None:
        record.provisioning_error_message = error_message
        update_fields.add("provisioning_error_message")
    record.save(update_fields=sorted(update_fields))
    logger.info("toolbox %s: %s -> %s", record.id, from_status, to_status)
    toolbox_changed.send(
        sender=ToolboxRecord,
        record=record,
        from_status=from_status,
        to_status=to_status,
        message=message,
    )
    return record


def transition(
    toolbox_id,
    to_status: str,
    *,
    expected: Optional[Iterable[str]] = None,
    message: str = "",
    error_message: Optional[str] = None,
    **changes,
) -> ToolboxRecord:
    with locked_record(toolbox_id) as record:
        if expected is not None and record.status not in set(expected):
            raise InvalidTransition(f"toolbox is {record.status}, expected one of {sorted(expected)}")
        for field, value in changes.items():
            setattr(record, field, value)
        return apply_transition(
            record,
            to_status,
            message=message,
            error_message=error_message,
            fields=changes.keys(),
        )
