"""Progress reporting for ingest tasks: task row, Redis pub/sub event and mirrored state key."""

import json
import logging
from datetime import datetime
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from recipe_ingest.app.db import models
from recipe_ingest.app.schemas.ingest import ProgressEvent, TaskState
from recipe_ingest.app.services.queue_service import get_redis_connection

logger = logging.getLogger(__name__)

PROGRESS_EVENT_TYPE = "ingest.progress"
STATE_TTL_SECONDS = 7 * 24 * 60 * 60


def thread_channel(thread_id: str) -> str:
    return f"ingest:thread:{thread_id}"


def task_state_key(task_id: str) -> str:
    return f"ingest:task:{task_id}:state"


class ProgressReporter:
    """Persists phase/progress on the task row and fans it out over Redis.

    Redis is best effort: a publish failure is logged and the pipeline keeps
    going, since the task row stays the source of truth.
    """

    def __init__(self, db: Session, task: models.IngestTask, redis_conn: Optional[Redis] = None):
        self.db = db
        self.task = task
        self._redis = redis_conn

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection()
        return self._redis

    def report(self, phase: str, progress: int, message: str) -> ProgressEvent:
        progress = max(0, min(100, int(progress)))
        self.task.current_phase = phase
        self.task.progress = progress
        self.task.status_message = message
        self.task.updated_at = datetime.utcnow()
        self.db.commit()

        event = ProgressEvent(
            task_id=self.task.id,
            phase=phase,
            progress=progress,
            message=message,
            timestamp=datetime.utcnow(),
        )
        self.publish(event)
        self.mirror_state()
        logger.debug("Task %s progress %d%% (%s): %s", self.task.id, progress, phase, message)
        return event

    def publish(self, event: ProgressEvent) -> None:
        message = {"type": PROGRESS_EVENT_TYPE, "data": event.model_dump(mode="json", by_alias=True)}
        try:
            self.redis.publish(thread_channel(self.task.thread_id), json.dumps(message))
        except RedisError as exc:
            logger.warning("Failed to publish progress for task %s: %s", self.task.id, exc)

    def state(self) -> TaskState:
        result = self.task.status_message
        if self.task.error_message:
            result = self.task.error_message
        return TaskState(
            task_id=self.task.id,
            status=self.task.status,
            current_phase=self.task.current_phase,
            progress=self.task.progress or 0,
            last_updated=self.task.updated_at or datetime.utcnow(),
            result=result,
        )

    def mirror_state(self) -> None:
        try:
            self.redis.set(
                task_state_key(self.task.id),
                self.state().model_dump_json(by_alias=True),
                ex=STATE_TTL_SECONDS,
            )
        except RedisError as exc:
            logger.warning("Failed to mirror state for task %s: %s", self.task.id, exc)
