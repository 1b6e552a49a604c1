# core/tasks/state.py
import redis
from loguru import logger
from typing import Dict, List, Optional

from settings import settings


class SchedulerState:
    """Redis-backed state shared by the HTTP API and the workers."""

    PREFIX = "pander"

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis = client or redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

    def _key(self, *parts: str) -> str:
        return ":".join((self.PREFIX,) + parts)

    # Monitor chain

    def is_monitoring_enabled(self) -> bool:
        return self.redis.get(self._key("monitor", "enabled")) == "1"

    def set_monitoring_enabled(self, enabled: bool) -> None:
        self.redis.set(self._key("monitor", "enabled"), "1" if enabled else "0")

    def get_last_processed_count(self) -> int:
        count = self.redis.get(self._key("monitor", "last_processed_count"))
        return int(count) if count else 0

    def set_last_processed_count(self, count: int) -> None:
        self.redis.set(self._key("monitor", "last_processed_count"), str(count))

    def get_pending_monitor_job(self) -> Optional[str]:
        return self.redis.get(self._key("monitor", "pending_job"))

    def set_pending_monitor_job(self, job_id: str) -> None:
        self.redis.set(self._key("monitor", "pending_job"), job_id)

    def clear_pending_monitor_job(self) -> None:
        self.redis.delete(self._key("monitor", "pending_job"))

    # Polls discovered but not yet scheduled, retried on every check

    def get_unscheduled_polls(self) -> List[str]:
        return sorted(self.redis.smembers(self._key("monitor", "unscheduled")))

    def add_unscheduled_poll(self, poll_address: str) -> None:
        self.redis.sadd(self._key("monitor", "unscheduled"), poll_address)

    def remove_unscheduled_poll(self, poll_address: str) -> None:
        self.redis.srem(self._key("monitor", "unscheduled"), poll_address)

    # Job de-duplication

    def claim_job(self, job_key: str, ttl: int) -> bool:
        """Mark a job as scheduled. False when it already was."""
        return bool(self.redis.set(self._key("jobs", job_key), "1", nx=True, ex=ttl))

    def release_job(self, job_key: str) -> None:
        self.redis.delete(self._key("jobs", job_key))

    # Health

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def queue_lengths(self, queue_names: List[str]) -> Dict[str, int]:
        # Celery's Redis transport keeps each queue in a list named after it
        return {name: int(self.redis.llen(name)) for name in queue_names}


_state: Optional[SchedulerState] = None


def get_state() -> SchedulerState:
    global _state
    if _state is None:
        _state = SchedulerState()
    return _state
