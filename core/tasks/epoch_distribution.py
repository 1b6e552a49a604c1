# core/tasks/epoch_distribution.py
import time
from celery import shared_task
from loguru import logger
from typing import Dict, Any, Optional

from agent.contract_service import ContractService
from core.epochs import EPOCH_COUNT, epoch_end, seconds_until
from core.tasks.queueing import EPOCH_DISTRIBUTION_QUEUE, capped_countdown, enqueue_once, run_async, task_options
from core.tasks.state import get_state
from settings import settings


def epoch_job_key(poll_address: str, epoch_number: int, offset: int = 0) -> str:
    if offset:
        return f"epoch-{poll_address}-{epoch_number}-batch-{offset}"
    return f"epoch-{poll_address}-{epoch_number}"


class EpochDistributor:
    """
    Settles one epoch of a poll in batches of stakers

    Each run covers a single slice; the next slice, and after the last slice
    the next epoch, is handed back to the queue.
    """

    def __init__(self, contracts: ContractService, state=None, clock=time.time):
        self.contracts = contracts
        self.state = state or get_state()
        self.clock = clock

    async def distribute(self, poll_address: str, epoch_number: int,
                         batch_size: int = 100, offset: int = 0) -> Dict[str, Any]:
        if not 1 <= epoch_number <= EPOCH_COUNT:
            raise ValueError(f"Epoch must be between 1 and {EPOCH_COUNT}, got {epoch_number}")
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")

        log = logger.bind(component="EpochDistributionWorker", poll_address=poll_address, epoch=epoch_number)
        log.info(f"Processing epoch distribution (batch size {batch_size}, offset {offset})")

        epoch_info = await self.contracts.get_epoch_info(poll_address, epoch_number)

        remaining = seconds_until(epoch_info.end_time, self.clock())
        if remaining > 0:
            countdown = capped_countdown(remaining)
            distribute_epoch.apply_async(
                kwargs={
                    "poll_address": poll_address,
                    "epoch_number": epoch_number,
                    "batch_size": batch_size,
                    "offset": offset,
                },
                countdown=countdown
            )
            log.info(f"Epoch ends in {remaining}s, checking again in {countdown}s")
            return {"status": "waiting", "remaining": remaining}

        if epoch_info.is_distributed:
            log.info("Epoch already distributed")
            await self.queue_next_epoch(poll_address, epoch_number)
            return {"processed": 0, "total": epoch_info.num_stakers, "complete": True}

        participant_count = epoch_info.num_stakers
        if participant_count == 0:
            log.info("No participants found")
            await self.queue_next_epoch(poll_address, epoch_number)
            return {"processed": 0, "total": 0, "complete": True}

        log.info(f"Found {participant_count} participants")

        current_batch_size = min(batch_size, participant_count - offset)
        if current_batch_size <= 0:
            log.info("All batches processed")
            await self.queue_next_epoch(poll_address, epoch_number)
            return {"processed": 0, "total": participant_count, "complete": True}

        tx_hash = await self.contracts.distribute_epoch_rewards(
            poll_address, epoch_number, offset, current_batch_size
        )
        log.info(f"Processed batch {offset}-{offset + current_batch_size} in {tx_hash}")

        new_offset = offset + current_batch_size
        if new_offset < participant_count:
            enqueue_once(
                distribute_epoch,
                epoch_job_key(poll_address, epoch_number, new_offset),
                {
                    "poll_address": poll_address,
                    "epoch_number": epoch_number,
                    "batch_size": batch_size,
                    "offset": new_offset,
                },
                countdown=settings.EPOCH_BATCH_DELAY_SECONDS,
                state=self.state
            )
            return {
                "processed": current_batch_size,
                "total": participant_count,
                "complete": False,
                "next_batch": new_offset,
            }

        await self.queue_next_epoch(poll_address, epoch_number)
        return {"processed": current_batch_size, "total": participant_count, "complete": True}

    async def queue_next_epoch(self, poll_address: str, epoch_number: int) -> Optional[str]:
        if epoch_number >= EPOCH_COUNT:
            logger.info(f"Final epoch of {poll_address} distributed")
            return None

        details = await self.contracts.get_poll_details(poll_address)

        next_epoch_number = epoch_number + 1
        next_epoch_end = epoch_end(details.start_date, details.end_date, next_epoch_number)
        delay = seconds_until(next_epoch_end, self.clock())

        logger.bind(poll_address=poll_address).info(
            f"Queueing epoch {next_epoch_number}, ends in {delay}s"
        )

        return enqueue_once(
            distribute_epoch,
            epoch_job_key(poll_address, next_epoch_number),
            {
                "poll_address": poll_address,
                "epoch_number": next_epoch_number,
                "batch_size": settings.EPOCH_BATCH_SIZE,
                "offset": 0,
            },
            countdown=delay,
            state=self.state
        )


async def run_distribution(poll_address: str, epoch_number: int, batch_size: int, offset: int) -> Dict[str, Any]:
    contracts = ContractService(settings)

    try:
        return await EpochDistributor(contracts).distribute(poll_address, epoch_number, batch_size, offset)
    finally:
        await contracts.close()


@shared_task(name="epoch_distribution.distribute_epoch", **task_options(EPOCH_DISTRIBUTION_QUEUE))
def distribute_epoch(poll_address: str, epoch_number: int, batch_size: int = 100, offset: int = 0):
    """Celery task distributing one batch of an epoch's rewards"""
    try:
        return run_async(run_distribution(poll_address, epoch_number, batch_size, offset))
    except Exception as e:
        logger.bind(component="EpochDistributionWorker", poll_address=poll_address, epoch=epoch_number).error(
            f"Failed to distribute epoch rewards: {e}"
        )
        raise
