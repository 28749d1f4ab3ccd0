"""
Worker functions for processing ingest jobs from the Redis queue.

``process_job`` is the RQ entry point. It loads the task row named by the
envelope, runs the phase runner and writes the outcome back to the row. While
the pipeline runs, the task row is polled so that a cancel request from the
API stops the run at the next checkpoint.
"""
import asyncio
import json
import logging
from typing import Callable, Optional

from redis import Redis
from sqlalchemy import select
from sqlalchemy.orm import Session

from recipe_ingest.app.db import models
from recipe_ingest.app.db.session import SessionLocal
from recipe_ingest.app.services import task_service
from recipe_ingest.app.services.ingest.cancellation import CancellationToken, IngestCancelledError
from recipe_ingest.app.services.ingest.phase_runner import IngestPhaseRunner, IngestPipelineResult
from recipe_ingest.app.services.ingest.progress import ProgressReporter
from recipe_ingest.app.services.task_service import IngestTaskStatus

logger = logging.getLogger(__name__)

CANCEL_POLL_INTERVAL_SECONDS = 2.0


def process_job(payload_json: str) -> None:
    """
    Process a job from the Redis queue.

    Args:
        payload_json: JSON envelope produced by ``queue_service.create_envelope``
    """
    try:
        envelope = json.loads(payload_json)
        job_id = envelope["job_id"]
        job_type = envelope.get("job_type")
        task_id = (envelope.get("payload") or {}).get("task_id") or job_id
        logger.info("Processing job %s (%s)", job_id, job_type)

        with SessionLocal() as db:
            task = db.get(models.IngestTask, task_id)
            if not task:
                logger.error("Task %s not found in database (job_id=%s)", task_id, job_id)
                return
            if task.status == IngestTaskStatus.CANCELED.value:
                logger.info("Task %s was canceled, skipping", task_id)
                return
            if not task_service.mark_running(db, task):
                logger.info("Task %s is %s, not runnable; skipping", task_id, task.status)
                return
            asyncio.run(run_task(db, task))
    except Exception as exc:
        logger.exception("Failed to process job: %s", exc)
        try:
            task_id = json.loads(payload_json).get("job_id")
            if task_id:
                with SessionLocal() as db:
                    task = db.get(models.IngestTask, task_id)
                    if task:
                        task_service.mark_failed(db, task, "INTERNAL_ERROR", str(exc), None)
        except Exception:
            logger.exception("Failed to mark task as failed")


async def run_task(
    db: Session,
    task: models.IngestTask,
    runner: Optional[IngestPhaseRunner] = None,
    redis_conn: Optional[Redis] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    poll_interval: Optional[float] = CANCEL_POLL_INTERVAL_SECONDS,
) -> IngestPipelineResult:
    """Run the pipeline for a RUNNING task and persist the outcome."""
    reporter = ProgressReporter(db, task, redis_conn)
    if runner is None:
        runner = IngestPhaseRunner(
            recipe_loader=lambda recipe_id: task_service.load_recipe(db, recipe_id, task.user_id),
            progress=reporter,
        )
    else:
        runner.progress = reporter

    cancel = CancellationToken()
    watcher = None
    if poll_interval:
        watcher = asyncio.create_task(_watch_for_cancel(task.id, cancel, session_factory, poll_interval))
    try:
        result = await runner.run(task.id, task.thread_id, task.payload, cancel)
    except IngestCancelledError:
        logger.info("Task %s canceled during phase %s", task.id, task.current_phase)
        db.refresh(task)
        task_service.mark_canceled(db, task)
        reporter.mirror_state()
        return IngestPipelineResult(
            success=False, error="Canceled", error_code="CANCELED", failed_phase=task.current_phase
        )
    finally:
        if watcher is not None:
            watcher.cancel()

    db.refresh(task)
    if result.success and result.draft is not None:
        task_service.mark_review_ready(db, task, result.draft)
        logger.info("Task %s is ready for review", task.id)
    else:
        task_service.mark_failed(
            db, task, result.error_code or "INTERNAL_ERROR", result.error or "Unknown error", result.failed_phase
        )
        logger.warning("Task %s failed in %s: %s (%s)", task.id, result.failed_phase, result.error, result.error_code)
    reporter.mirror_state()
    return result


async def _watch_for_cancel(
    task_id: str,
    cancel: CancellationToken,
    session_factory: Callable[[], Session],
    interval: float,
) -> None:
    while not cancel.cancelled:
        await asyncio.sleep(interval)
        with session_factory() as db:
            status = db.scalar(select(models.IngestTask.status).where(models.IngestTask.id == task_id))
        if status == IngestTaskStatus.CANCELED.value:
            logger.info("Cancel requested for task %s", task_id)
            cancel.cancel("Task canceled by user")
