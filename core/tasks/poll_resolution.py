# core/tasks/poll_resolution.py
import time
from celery import shared_task
from loguru import logger
from typing import Dict, Any, Optional

from agent.contract_service import ContractService
from agent.resolution_service import PollResolutionService
from core.epochs import seconds_until
from core.tasks.queueing import POLL_RESOLUTION_QUEUE, capped_countdown, run_async, task_options
from settings import settings


def resolution_job_key(poll_address: str) -> str:
    return f"resolve-{poll_address}"


class PollResolver:
    def __init__(self, contracts: ContractService, resolution_service: PollResolutionService, clock=time.time):
        self.contracts = contracts
        self.resolution_service = resolution_service
        self.clock = clock

    async def resolve(self, poll_address: str, question: str, start_date: Optional[int] = None) -> Dict[str, Any]:
        log = logger.bind(component="PollResolutionWorker", poll_address=poll_address)
        log.info(f"Processing poll resolution: {question!r}")

        poll_info = await self.contracts.get_poll_info(poll_address)

        if poll_info.is_resolved:
            log.info("Poll already resolved")
            return {"status": "already_resolved"}

        remaining = seconds_until(poll_info.end_timestamp, self.clock())
        if remaining > 0:
            countdown = capped_countdown(remaining)
            resolve_poll.apply_async(
                kwargs={"poll_address": poll_address, "question": question, "start_date": start_date},
                countdown=countdown
            )
            log.info(f"Poll not ready for resolution, ends in {remaining}s, checking again in {countdown}s")
            return {"status": "waiting", "remaining": remaining}

        resolution = await self.resolution_service.resolve(question, start_date)
        log.info(f"Received resolution: {resolution.model_dump()}")

        tx_hash = await self.contracts.resolve_poll(poll_address, resolution.winning_position)
        log.info(f"Poll resolved successfully in {tx_hash}")

        return {
            "status": "resolved",
            "tx_hash": tx_hash,
            "resolution": resolution.model_dump(),
        }


async def run_resolution(poll_address: str, question: str, start_date: Optional[int]) -> Dict[str, Any]:
    contracts = ContractService(settings)
    resolution_service = PollResolutionService(settings)

    try:
        return await PollResolver(contracts, resolution_service).resolve(poll_address, question, start_date)
    finally:
        await resolution_service.close()
        await contracts.close()


@shared_task(name="poll_resolution.resolve_poll", **task_options(POLL_RESOLUTION_QUEUE))
def resolve_poll(poll_address: str, question: str, start_date: Optional[int] = None):
    """Celery task resolving a poll once its end time has passed"""
    try:
        return run_async(run_resolution(poll_address, question, start_date))
    except Exception as e:
        logger.bind(component="PollResolutionWorker", poll_address=poll_address).error(
            f"Failed to resolve poll: {e}"
        )
        raise
