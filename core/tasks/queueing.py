# core/tasks/queueing.py
import asyncio
from loguru import logger
from typing import Any, Dict, Optional

from core.tasks.state import get_state
from settings import settings

POLL_MONITOR_QUEUE = "poll-monitor"
EPOCH_DISTRIBUTION_QUEUE = "epoch-distribution"
POLL_RESOLUTION_QUEUE = "poll-resolution"

QUEUES = [POLL_MONITOR_QUEUE, EPOCH_DISTRIBUTION_QUEUE, POLL_RESOLUTION_QUEUE]

# Default job options per queue
QUEUE_OPTIONS = {
    POLL_MONITOR_QUEUE: {"attempts": 3, "rate_limit": None},
    EPOCH_DISTRIBUTION_QUEUE: {"attempts": 3, "rate_limit": "5/m"},
    POLL_RESOLUTION_QUEUE: {"attempts": 2, "rate_limit": "2/m"},
}


def task_options(queue: str) -> Dict[str, Any]:
    """Celery task options giving a queue's attempts and exponential backoff"""
    options = QUEUE_OPTIONS[queue]
    return {
        "autoretry_for": (Exception,),
        "dont_autoretry_for": (ValueError,),
        "max_retries": options["attempts"] - 1,
        "retry_backoff": 1,
        "retry_backoff_max": 60,
        "retry_jitter": False,
        "rate_limit": options["rate_limit"],
        "ignore_result": True,
    }


def capped_countdown(seconds: float) -> int:
    """Clamp a delay so a delayed message never outlives the visibility timeout"""
    return int(min(max(0, seconds), settings.MAX_COUNTDOWN_SECONDS))


def enqueue_once(task, job_key: str, kwargs: Dict[str, Any], countdown: float = 0,
                 state=None) -> Optional[str]:
    """
    Enqueue a task unless a job with the same key was already scheduled

    Returns the new task id, or None when the job was a duplicate.
    """
    state = state or get_state()

    if not state.claim_job(job_key, settings.JOB_CLAIM_TTL_SECONDS):
        logger.info(f"Job {job_key} already scheduled, skipping")
        return None

    try:
        result = task.apply_async(kwargs=kwargs, countdown=capped_countdown(countdown))
    except Exception as e:
        logger.error(f"Failed to enqueue {job_key}: {e}")
        state.release_job(job_key)
        raise

    logger.info(f"Queued {job_key} in {capped_countdown(countdown)}s (task {result.id})")
    return result.id


def run_async(coro):
    """Run a coroutine to completion on a fresh event loop"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
