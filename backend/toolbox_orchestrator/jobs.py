import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.core.cache import cache


logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4)

POLL_TASK = "toolbox_orchestrator.worker_tasks.poll_toolbox_status"
LOOP_KEY_TTL = 24 * 60 * 60


def _async_mode() -> str:
    return str(getattr(settings, "TOOLBOX_ASYNC_JOBS_MODE", "redis") or "redis").strip().lower()


def _queue():
    import redis
    from rq import Queue

    return Queue("default", connection=redis.Redis.from_url(settings.TOOLBOX_JOBS_REDIS_URL))


def _loop_key(toolbox_id: str) -> str:
    return f"toolbox-poll-loop:{toolbox_id}"


def is_current_loop(toolbox_id: str, loop_token: str) -> bool:
    return cache.get(_loop_key(toolbox_id)) == loop_token


def end_loop(toolbox_id: str, loop_token: str) -> None:
    if is_current_loop(toolbox_id, loop_token):
        cache.delete(_loop_key(toolbox_id))


def enqueue_poll(toolbox_id: str, loop_token: str, delay_seconds: float = 0) -> Optional[str]:
    mode = _async_mode()
    if mode == "redis":
        queue = _queue()
        if delay_seconds:
            job = queue.enqueue_in(timedelta(seconds=delay_seconds), POLL_TASK, toolbox_id, loop_token, job_timeout=300)
        else:
            job = queue.enqueue(POLL_TASK, toolbox_id, loop_token, job_timeout=300)
        return job.id
    if mode == "inprocess":
        from .worker_tasks import run_inprocess_tick

        # Each submission runs a single tick; the next one is resubmitted after the delay.
        if delay_seconds:
            timer = threading.Timer(delay_seconds, _executor.submit, args=(run_inprocess_tick, toolbox_id, loop_token))
            timer.daemon = True
            timer.start()
        else:
            _executor.submit(run_inprocess_tick, toolbox_id, loop_token)
        return None
    logger.debug("async jobs disabled; not polling toolbox %s", toolbox_id)
    return None


def schedule_reconcile(toolbox_id) -> Optional[str]:
    """Start a fresh polling loop for one toolbox, superseding any older loop."""
    toolbox_id = str(toolbox_id)
    loop_token = uuid.uuid4().hex
    cache.set(_loop_key(toolbox_id), loop_token, timeout=LOOP_KEY_TTL)
    return enqueue_poll(toolbox_id, loop_token)
