# core/tasks/scheduler.py
from celery import Celery
from celery.signals import worker_ready, task_prerun, task_success, task_failure
from loguru import logger
from settings import settings
import sys

from core.logging_config import setup_logging
from core.tasks.queueing import QUEUES, POLL_MONITOR_QUEUE, EPOCH_DISTRIBUTION_QUEUE, POLL_RESOLUTION_QUEUE

# Configure logging
setup_logging()

# Celery application instance
scheduler_app = Celery(
    'pander_agent',
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

# Import tasks to register them with Celery
from core.tasks.poll_monitor import monitor_polls
from core.tasks.epoch_distribution import distribute_epoch
from core.tasks.poll_resolution import resolve_poll

# Celery configuration
scheduler_app.conf.timezone = 'UTC'
scheduler_app.conf.task_serializer = 'json'
scheduler_app.conf.broker_connection_retry_on_startup = True
scheduler_app.conf.broker_transport_options = {'visibility_timeout': settings.BROKER_VISIBILITY_TIMEOUT}
scheduler_app.conf.task_soft_time_limit = 600  # 10 minutes soft limit
scheduler_app.conf.task_time_limit = 900  # 15 minutes hard limit
scheduler_app.conf.worker_prefetch_multiplier = 1  # Process one task at a time
scheduler_app.conf.task_acks_late = True
scheduler_app.conf.task_store_errors_even_if_ignored = True  # Keep failed jobs

# One queue per job type
scheduler_app.conf.task_routes = {
    'poll_monitor.monitor_polls': {'queue': POLL_MONITOR_QUEUE},
    'epoch_distribution.distribute_epoch': {'queue': EPOCH_DISTRIBUTION_QUEUE},
    'poll_resolution.resolve_poll': {'queue': POLL_RESOLUTION_QUEUE},
}


# Worker lifecycle logging
@worker_ready.connect
def on_worker_ready(sender=None, **kwargs):
    logger.info("Worker is ready")


@task_prerun.connect
def on_task_prerun(task_id=None, task=None, **kwargs):
    logger.info(f"Processing job {task_id} ({task.name})")


@task_success.connect
def on_task_success(sender=None, result=None, **kwargs):
    logger.info(f"Job {sender.request.id} completed successfully: {result}")


@task_failure.connect
def on_task_failure(task_id=None, exception=None, **kwargs):
    logger.error(f"Job {task_id} failed: {exception}")


# Allow manual execution outside Docker
if __name__ == '__main__':
    logger.info("Starting Celery worker for the Pander poll agent")
    logger.info(f"Poll check interval: every {settings.MONITOR_INTERVAL_SECONDS} seconds")
    logger.info(f"Redis broker: {settings.REDIS_URL}")

    queues = sys.argv[1] if len(sys.argv) > 1 else ','.join(QUEUES)

    scheduler_app.start(argv=[
        'worker',
        '--loglevel=info',
        '--concurrency=1',  # Keeps the monitor chain and resolutions serial
        f'--queues={queues}'
    ])
