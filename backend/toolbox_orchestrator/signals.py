import logging

from django.dispatch import Signal, receiver


logger = logging.getLogger(__name__)

# Sent once per applied transition, scoped to the one record that changed.
# kwargs: record, from_status, to_status, message
toolbox_changed = Signal()


@receiver(toolbox_changed)
def record_toolbox_event(sender, record, from_status: str, to_status: str, message: str = "", **kwargs) -> None:
    from .models import ToolboxEvent

    ToolboxEvent.objects.create(
        toolbox=record,
        from_status=from_status,
        to_status=to_status,
        message=message[:2000],
    )
