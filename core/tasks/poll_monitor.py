# core/tasks/poll_monitor.py
import time
from celery import shared_task, uuid
from loguru import logger
from typing import Dict, Any, Optional

from agent.contract_service import ContractService
from core.epochs import epoch_end, seconds_until
from core.tasks.epoch_distribution import distribute_epoch, epoch_job_key
from core.tasks.poll_resolution import resolve_poll, resolution_job_key
from core.tasks.queueing import POLL_MONITOR_QUEUE, QUEUES, enqueue_once, run_async, task_options
from core.tasks.state import get_state
from settings import settings


class PollMonitor:
    """
    Discovers polls created on CapyCore since the last check

    Every new poll gets its first epoch distribution and its resolution
    queued. Both are claimed in Redis, so re-running a check is harmless.
    """

    def __init__(self, contracts: ContractService, state=None, clock=time.time):
        self.contracts = contracts
        self.state = state or get_state()
        self.clock = clock

    async def check_for_new_polls(self, last_processed_count: Optional[int] = None) -> Dict[str, Any]:
        log = logger.bind(component="PollMonitorWorker")

        current_count = await self.contracts.get_poll_count()
        if last_processed_count is None:
            last_processed_count = self.state.get_last_processed_count()

        log.info(f"Checking for new polls (current {current_count}, last processed {last_processed_count})")

        new_polls = []
        if current_count > last_processed_count:
            new_polls = await self.contracts.get_new_polls(last_processed_count, current_count)
            log.info(f"Found {len(new_polls)} new polls")
        else:
            log.info("No new polls found")

        retried = [p for p in self.state.get_unscheduled_polls() if p not in new_polls]
        if retried:
            log.info(f"Retrying {len(retried)} polls that could not be scheduled earlier")

        unscheduled = []
        for poll_address in retried + new_polls:
            try:
                await self.schedule_poll(poll_address)
            except Exception as e:
                # One bad poll must not hold back the rest of the batch
                log.warning(f"Could not schedule poll {poll_address}, retrying on the next check: {e}")
                self.state.add_unscheduled_poll(poll_address)
                unscheduled.append(poll_address)
            else:
                self.state.remove_unscheduled_poll(poll_address)

        if current_count > last_processed_count:
            self.state.set_last_processed_count(current_count)
            last_processed_count = current_count

        return {
            "new_polls": new_polls,
            "total_polls": current_count,
            "last_processed_count": last_processed_count,
            "unscheduled": unscheduled,
        }

    async def schedule_poll(self, poll_address: str) -> Dict[str, Optional[str]]:
        """Queue the first epoch distribution and the resolution of a poll"""
        details = await self.contracts.get_poll_details(poll_address)
        now = self.clock()

        first_epoch_delay = seconds_until(epoch_end(details.start_date, details.end_date, 1), now)
        resolution_delay = seconds_until(details.end_date, now)

        epoch_job = enqueue_once(
            distribute_epoch,
            epoch_job_key(poll_address, 1),
            {
                "poll_address": poll_address,
                "epoch_number": 1,
                "batch_size": settings.EPOCH_BATCH_SIZE,
                "offset": 0,
            },
            countdown=first_epoch_delay,
            state=self.state
        )

        resolution_job = enqueue_once(
            resolve_poll,
            resolution_job_key(poll_address),
            {
                "poll_address": poll_address,
                "question": f"{details.question} {details.description}".strip(),
                "start_date": details.start_date,
            },
            countdown=resolution_delay,
            state=self.state
        )

        logger.bind(poll_address=poll_address).info(
            f"Scheduled poll: first epoch in {first_epoch_delay}s, resolution in {resolution_delay}s"
        )
        return {"epoch_job": epoch_job, "resolution_job": resolution_job}


def schedule_next_check(state, last_processed_count: Optional[int]) -> str:
    """Re-enqueue the monitor; the pre-generated id becomes the live chain"""
    next_job_id = uuid()
    state.set_pending_monitor_job(next_job_id)
    monitor_polls.apply_async(
        kwargs={"last_processed_count": last_processed_count},
        countdown=settings.MONITOR_INTERVAL_SECONDS,
        task_id=next_job_id
    )
    logger.info(f"Scheduled next poll check in {settings.MONITOR_INTERVAL_SECONDS}s ({next_job_id})")
    return next_job_id


async def run_monitor(last_processed_count: Optional[int], state) -> Dict[str, Any]:
    contracts = ContractService(settings)

    try:
        return await PollMonitor(contracts, state).check_for_new_polls(last_processed_count)
    finally:
        await contracts.close()


async def run_schedule_poll(poll_address: str) -> Dict[str, Optional[str]]:
    contracts = ContractService(settings)

    try:
        return await PollMonitor(contracts).schedule_poll(poll_address)
    finally:
        await contracts.close()


@shared_task(bind=True, name="poll_monitor.monitor_polls", **task_options(POLL_MONITOR_QUEUE))
def monitor_polls(self, last_processed_count: Optional[int] = None):
    """Celery task checking CapyCore for new polls, then re-enqueueing itself"""
    job_id = self.request.id
    log = logger.bind(component="PollMonitorWorker", job_id=job_id)
    state = get_state()

    if not state.is_monitoring_enabled():
        log.info("Monitoring is stopped, not checking")
        return {"status": "stopped"}

    pending_job = state.get_pending_monitor_job()
    if job_id and pending_job and pending_job != job_id:
        log.info(f"Superseded by monitor job {pending_job}")
        return {"status": "superseded"}

    try:
        result = run_async(run_monitor(last_processed_count, state))
    except Exception as e:
        log.error(f"Failed to monitor polls: {e}")
        if self.request.retries >= self.max_retries:
            # Out of retries, keep the chain alive for the next interval
            schedule_next_check(state, last_processed_count)
        raise

    # Monitoring may have been stopped while this check ran
    if not state.is_monitoring_enabled():
        log.info("Monitoring stopped during the check, not rescheduling")
        return result

    schedule_next_check(state, result["last_processed_count"])
    return result


def start_monitoring(state=None) -> str:
    """Enable monitoring and start a fresh monitor chain"""
    state = state or get_state()
    state.set_monitoring_enabled(True)

    job_id = uuid()
    state.set_pending_monitor_job(job_id)
    monitor_polls.apply_async(kwargs={}, task_id=job_id)

    logger.info(f"Poll monitoring started ({job_id})")
    return job_id


def stop_monitoring(state=None) -> Optional[str]:
    state = state or get_state()
    state.set_monitoring_enabled(False)

    job_id = state.get_pending_monitor_job()
    if job_id:
        monitor_polls.app.control.revoke(job_id)
        state.clear_pending_monitor_job()

    logger.info("Poll monitoring stopped")
    return job_id


def monitoring_status(state=None) -> Dict[str, Any]:
    state = state or get_state()

    redis_ok = state.ping()
    status: Dict[str, Any] = {"redis": "OK" if redis_ok else "Failed"}
    if not redis_ok:
        return status

    status.update({
        "monitoring": state.is_monitoring_enabled(),
        "last_processed_count": state.get_last_processed_count(),
        "pending_monitor_job": state.get_pending_monitor_job(),
        "unscheduled_polls": state.get_unscheduled_polls(),
        # Delayed jobs are held by workers and do not show up here
        "queues": state.queue_lengths(QUEUES),
    })
    return status
