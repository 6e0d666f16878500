"""RQ queue access for background revenue analysis runs."""

from typing import Any
from uuid import UUID

from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from app.core.config import settings
from app.core.redis import get_redis

# Lazy initialized queues cache
_queues: dict[str, Queue] = {}

# Queue names for different job types
QUEUE_NAMES = {
    "analysis": "revenue_analysis",
}


def get_queue(name: str = "default") -> Queue:
    """Get the RQ queue with the given name, creating it once per process."""
    if name not in _queues:
        _queues[name] = Queue(name=name, connection=get_redis())
    return _queues[name]


def get_analysis_queue() -> Queue:
    """Get the revenue analysis queue."""
    return get_queue(QUEUE_NAMES["analysis"])


def enqueue_job(
    func: Any,
    *args: Any,
    queue_name: str = "default",
    job_timeout: int | None = None,
    job_id: str | UUID | None = None,
    **kwargs: Any,
) -> Job:
    """Enqueue a function call on a worker queue.

    Args:
        func: Job function; must be importable by the worker.
        *args: Positional arguments for the function.
        queue_name: Name of the queue. Defaults to "default".
        job_timeout: Seconds before the worker kills the job
            (``settings.job_timeout_seconds`` when omitted).
        job_id: Optional caller-chosen job ID, so the API can return it
            before the worker picks the job up.
        **kwargs: Keyword arguments for the function.

    Returns:
        The queued RQ Job.
    """
    queue = get_queue(queue_name)
    return queue.enqueue(
        func,
        *args,
        job_timeout=job_timeout or settings.job_timeout_seconds,
        job_id=str(job_id) if job_id is not None else None,
        **kwargs,
    )


def get_job(job_id: str | UUID) -> Job | None:
    """Fetch a job, or None when Redis no longer knows it."""
    try:
        return Job.fetch(str(job_id), connection=get_redis())
    except NoSuchJobError:
        return None


def get_job_status(job_id: str | UUID) -> str | None:
    """Status string ('queued', 'started', 'finished', 'failed', ...) or None."""
    job = get_job(job_id)
    if job is None:
        return None
    status = job.get_status()
    if status is None:
        return None
    return getattr(status, "value", str(status))


def get_job_result(job_id: str | UUID) -> Any:
    """Return value of a finished job; None while it is pending or unknown."""
    job = get_job(job_id)
    if job is None:
        return None
    return job.return_value()


def clear_queues() -> None:
    """Empty every cached queue and forget it (test cleanup)."""
    for queue in _queues.values():
        queue.empty()
    _queues.clear()
