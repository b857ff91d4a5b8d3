import logging
import os

import django


logger = logging.getLogger(__name__)


def _setup_django() -> None:
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "toolyard.settings")
    django.setup()


def _poll_once(toolbox_id: str, loop_token: str) -> str:
    from django.conf import settings

    from toolbox_orchestrator.jobs import end_loop, enqueue_poll, is_current_loop
    from toolbox_orchestrator.reconciler import tick

    if not is_current_loop(toolbox_id, loop_token):
        return "superseded"
    try:
        result = tick(toolbox_id)
    except Exception:
        # A failed tick must not end the loop; the ceiling is only enforced while polling continues.
        logger.exception("reconciliation tick failed for toolbox %s", toolbox_id)
        enqueue_poll(toolbox_id, loop_token, delay_seconds=settings.TOOLBOX_POLL_INTERVAL_SECONDS)
        return "error"
    if result.keep_polling:
        enqueue_poll(toolbox_id, loop_token, delay_seconds=settings.TOOLBOX_POLL_INTERVAL_SECONDS)
    else:
        end_loop(toolbox_id, loop_token)
    return result.status


def poll_toolbox_status(toolbox_id: str, loop_token: str) -> str:
    """One reconciliation tick, re-enqueued until the toolbox needs no polling."""
    _setup_django()
    return _poll_once(toolbox_id, loop_token)


def run_inprocess_tick(toolbox_id: str, loop_token: str) -> str:
    """In-process counterpart of ``poll_toolbox_status``; the next tick is a fresh submission."""
    from django.db import close_old_connections

    close_old_connections()
    try:
        return _poll_once(toolbox_id, loop_token)
    finally:
        close_old_connections()
