"""
Queue infrastructure

Redis Queue (RQ) access for work handed to out-of-process workers. Jobs are
referenced by dotted path, so the API process never imports worker code.
"""

from functools import lru_cache
from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue
from rq.job import Job

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache()
def get_redis_connection() -> Redis:
    """Sync Redis client shared by every queue (RQ does not speak asyncio)"""
    return Redis.from_url(settings.redis_url)


class JobQueue:
    """Named RQ queue with the worker timeouts from settings"""

    def __init__(self, redis_conn: Redis, name: str):
        self.name = name
        self.queue = Queue(name, connection=redis_conn)

    def enqueue(
        self,
        func: str,
        *,
        kwargs: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
        timeout: int = settings.worker_job_timeout,
        result_ttl: int = settings.worker_result_ttl,
    ) -> Job:
        try:
            job = self.queue.enqueue(
                func,
                kwargs=kwargs or {},
                job_id=job_id,
                job_timeout=timeout,
                result_ttl=result_ttl,
            )
        except Exception as e:
            logger.error("queue.enqueue.failed", function=func, queue=self.name, error=str(e))
            raise
        logger.info("queue.enqueued", job_id=job.id, function=func, queue=self.name)
        return job


@lru_cache()
def get_queue(name: str) -> JobQueue:
    return JobQueue(get_redis_connection(), name)
