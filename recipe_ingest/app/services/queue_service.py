"""
Redis queue service for ingest tasks.

Jobs are wrapped in a standard envelope and enqueued with RQ onto the
``recipe_ingest.tasks`` queue; workers pick them up through
``queue_worker.process_job``.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue

from recipe_ingest.app.core.config import get_settings

logger = logging.getLogger(__name__)

QUEUE_INGEST = "recipe_ingest.tasks"
JOB_TYPE_INGEST = "recipe.ingest.requested"
SERVICE_NAME = "recipe-ingest"
WORKER_FUNCTION = "recipe_ingest.app.services.queue_worker.process_job"

_redis_conn: Optional[Redis] = None
_queues: Dict[str, Queue] = {}


def get_redis_connection() -> Redis:
    """Get or create Redis connection."""
    global _redis_conn
    if _redis_conn is None:
        settings = get_settings()
        _redis_conn = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            decode_responses=False,  # RQ expects bytes
        )
    return _redis_conn


def get_queue(queue_name: str = QUEUE_INGEST) -> Queue:
    """Get or create a named queue."""
    if queue_name not in _queues:
        _queues[queue_name] = Queue(queue_name, connection=get_redis_connection())
    return _queues[queue_name]


def create_envelope(
    job_type: str,
    job_id: str,
    workflow_id: str,
    payload: Dict[str, Any],
    source: str = SERVICE_NAME,
    target: str = SERVICE_NAME,
    request_id: Optional[str] = None,
    parent_job_id: Optional[str] = None,
    attempt: int = 1,
) -> Dict[str, Any]:
    """
    Build a queue message envelope.

    Args:
        job_type: Type of job (e.g. "recipe.ingest.requested")
        job_id: Unique job identifier, the ingest task id
        workflow_id: Workflow identifier, the conversation thread id
        payload: Job-specific payload data
        request_id: Optional request ID for tracing
        parent_job_id: Optional parent job ID for traceability
        attempt: Attempt number (default 1)
    """
    return {
        "schema_version": 1,
        "job_id": job_id,
        "workflow_id": workflow_id,
        "job_type": job_type,
        "source": source,
        "target": target,
        "created_at": datetime.utcnow().isoformat(),
        "attempt": attempt,
        "payload": payload,
        "trace": {
            "request_id": request_id,
            "parent_job_id": parent_job_id,
        },
    }


def enqueue_ingest_task(task_id: str, thread_id: str, request_id: Optional[str] = None, attempt: int = 1) -> None:
    """Enqueue an ingest task; the worker reloads the payload from the task row."""
    try:
        envelope = create_envelope(
            job_type=JOB_TYPE_INGEST,
            job_id=task_id,
            workflow_id=thread_id,
            payload={"task_id": task_id},
            request_id=request_id,
            attempt=attempt,
        )
        get_queue(QUEUE_INGEST).enqueue(
            WORKER_FUNCTION,
            json.dumps(envelope),
            job_id=task_id,
            job_timeout="10m",
        )
        logger.info("Enqueued ingest task %s (thread %s) to %s", task_id, thread_id, QUEUE_INGEST)
    except Exception as exc:
        logger.exception("Failed to enqueue ingest task %s: %s", task_id, exc)
        raise


def get_queue_length(queue_name: str = QUEUE_INGEST) -> int:
    """Get the number of pending jobs in a queue."""
    try:
        return len(get_queue(queue_name))
    except Exception as exc:
        logger.warning("Failed to get queue length for %s: %s", queue_name, exc)
        return 0
