import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.db import models
from recipe_ingest.app.schemas.ingest import (
    IngestMode,
    IngestPayload,
    NormalizePatchResult,
    RecipeDraft,
    RiskCategory,
)
from recipe_ingest.app.schemas.recipe import Recipe, RecipeSource
from recipe_ingest.app.services.ingest.normalize import apply_patches, select_patches
from recipe_ingest.app.services.ingest.phase_runner import LoadedRecipe, PHASE_FINALIZE
from recipe_ingest.app.services.ingest.policy import is_committable
from recipe_ingest.app.services.ingest.validator import validate_recipe

logger = logging.getLogger(__name__)


class IngestTaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    REVIEW_READY = "REVIEW_READY"
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


TERMINAL_STATUSES = {
    IngestTaskStatus.COMMITTED.value,
    IngestTaskStatus.REJECTED.value,
    IngestTaskStatus.EXPIRED.value,
    IngestTaskStatus.FAILED.value,
    IngestTaskStatus.CANCELED.value,
}

PHASE_EXPIRED = "Expired"


class TaskStateError(Exception):
    """A lifecycle transition that the task's current status does not allow."""

    def __init__(self, code: str, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


def create_task(
    db: Session,
    user_id: str,
    payload: IngestPayload,
    thread_id: Optional[str] = None,
) -> models.IngestTask:
    task = models.IngestTask(
        id=str(uuid.uuid4()),
        thread_id=thread_id or str(uuid.uuid4()),
        user_id=str(user_id),
        mode=payload.mode.value,
        payload=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
        status=IngestTaskStatus.PENDING.value,
        progress=0,
        attempts=0,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("Created ingest task %s (%s) for user %s", task.id, task.mode, user_id)
    return task


def get_task_for_user(db: Session, task_id: str, user_id: str) -> Optional[models.IngestTask]:
    stmt = select(models.IngestTask).where(models.IngestTask.id == task_id, models.IngestTask.user_id == str(user_id))
    return db.scalars(stmt).first()


def get_draft(task: models.IngestTask) -> Optional[RecipeDraft]:
    if not task.result_json:
        return None
    try:
        return RecipeDraft.model_validate(task.result_json)
    except ValidationError as exc:
        logger.error("Stored draft for task %s is unreadable: %s", task.id, exc)
        return None


def _save_draft(task: models.IngestTask, draft: RecipeDraft) -> None:
    task.result_json = draft.model_dump(mode="json", by_alias=True)


def is_canceled(db: Session, task: models.IngestTask) -> bool:
    db.refresh(task)
    return task.status == IngestTaskStatus.CANCELED.value


def mark_running(db: Session, task: models.IngestTask) -> bool:
    if task.status != IngestTaskStatus.PENDING.value and task.status != IngestTaskStatus.RUNNING.value:
        return False
    task.status = IngestTaskStatus.RUNNING.value
    task.started_at = datetime.utcnow()
    task.attempts = (task.attempts or 0) + 1
    task.error_code = None
    task.error_message = None
    task.failed_phase = None
    db.commit()
    db.refresh(task)
    return True


def mark_review_ready(db: Session, task: models.IngestTask, draft: RecipeDraft) -> None:
    if task.status in TERMINAL_STATUSES:
        return
    now = datetime.utcnow()
    task.status = IngestTaskStatus.REVIEW_READY.value
    task.current_phase = PHASE_FINALIZE
    task.progress = 100
    task.status_message = "Draft ready for review"
    task.review_ready_at = now
    task.completed_at = now
    _save_draft(task, draft)
    db.commit()
    db.refresh(task)


def mark_failed(db: Session, task: models.IngestTask, error_code: str, error_message: str, phase: Optional[str]) -> None:
    if task.status in TERMINAL_STATUSES:
        return
    task.status = IngestTaskStatus.FAILED.value
    task.completed_at = datetime.utcnow()
    task.error_code = error_code
    task.error_message = error_message
    task.failed_phase = phase
    task.status_message = f"Failed in {phase}: {error_message}" if phase else error_message
    db.commit()
    db.refresh(task)


def mark_canceled(db: Session, task: models.IngestTask) -> bool:
    if task.status not in {IngestTaskStatus.PENDING.value, IngestTaskStatus.RUNNING.value}:
        return False
    task.status = IngestTaskStatus.CANCELED.value
    task.completed_at = datetime.utcnow()
    task.status_message = "Canceled"
    db.commit()
    db.refresh(task)
    return True


def reject_task(db: Session, task: models.IngestTask, reason: Optional[str] = None) -> str:
    """Reject a review-ready draft. Rejecting twice is a no-op."""
    if task.status == IngestTaskStatus.REJECTED.value:
        return "Task was already rejected"
    if task.status in TERMINAL_STATUSES:
        raise TaskStateError("ALREADY_TERMINAL", f"Task is already in terminal state: {task.status}", task.status)
    if task.status != IngestTaskStatus.REVIEW_READY.value:
        raise TaskStateError(
            "INVALID_TASK_STATE",
            f"Task must be in REVIEW_READY state to reject. Current state: {task.status}",
            task.status,
        )
    task.status = IngestTaskStatus.REJECTED.value
    task.status_message = f"Rejected: {reason}" if reason else "Rejected"
    db.commit()
    db.refresh(task)
    logger.info("Task %s rejected", task.id)
    return "Task rejected"


def _review_ready_draft(task: models.IngestTask) -> RecipeDraft:
    if task.status != IngestTaskStatus.REVIEW_READY.value:
        raise TaskStateError(
            "INVALID_TASK_STATE", f"Task must be in REVIEW_READY state. Current state: {task.status}", task.status
        )
    draft = get_draft(task)
    if draft is None:
        raise TaskStateError("NO_DRAFT", "Task has no draft to act on", task.status)
    return draft


def commit_task(db: Session, task: models.IngestTask, block_on_warning: Optional[bool] = None) -> models.StoredRecipe:
    """Store the draft recipe. Normalize drafts overwrite the recipe they were made from."""
    draft = _review_ready_draft(task)
    if block_on_warning is None:
        block_on_warning = get_settings().guardrail_block_commit_on_warning
    if not is_committable(draft, block_on_warning):
        raise TaskStateError(
            "DRAFT_NOT_COMMITTABLE",
            "Draft has validation errors or violates the similarity policy",
            task.status,
        )

    now = datetime.utcnow()
    stored: Optional[models.StoredRecipe] = None
    if task.mode == IngestMode.NORMALIZE.value:
        stored = get_stored_recipe(db, draft.recipe.id, task.user_id)
    if stored is None:
        stored = models.StoredRecipe(id=str(uuid.uuid4()), user_id=task.user_id, created_at=now)
        db.add(stored)
    recipe = draft.recipe.model_copy(update={"id": stored.id, "created_at": stored.created_at or now, "updated_at": now})
    stored.name = recipe.name
    stored.document = recipe.to_document()
    stored.source_json = draft.source.model_dump(mode="json", by_alias=True)
    stored.source_url_hash = draft.source.url_hash or None
    stored.updated_at = now

    task.status = IngestTaskStatus.COMMITTED.value
    task.status_message = f"Committed as recipe {stored.id}"
    db.commit()
    db.refresh(stored)
    logger.info("Task %s committed as recipe %s", task.id, stored.id)
    return stored


def apply_normalize_patches(
    db: Session,
    task: models.IngestTask,
    patch_indices: Optional[Iterable[int]] = None,
    max_risk_level: Optional[RiskCategory] = None,
) -> NormalizePatchResult:
    """Apply the selected proposed patches to the original recipe and keep the result as the draft."""
    draft = _review_ready_draft(task)
    if draft.normalize_patches is None:
        raise TaskStateError("NOT_A_NORMALIZE_DRAFT", "Task draft carries no normalize patches", task.status)

    base = draft.original_recipe or draft.recipe
    selected = select_patches(draft.normalize_patches.patches, patch_indices, max_risk_level)
    result = apply_patches(base, selected)
    if result.normalized_recipe is not None:
        draft = draft.model_copy(
            update={
                "recipe": result.normalized_recipe,
                "original_recipe": base,
                "validation_report": validate_recipe(result.normalized_recipe),
            }
        )
        _save_draft(task, draft)
        task.status_message = result.summary
        db.commit()
        db.refresh(task)
    logger.info("Applied normalize patches for task %s: %s", task.id, result.summary or result.error)
    return result


def get_stored_recipe(db: Session, recipe_id: str, user_id: str) -> Optional[models.StoredRecipe]:
    stmt = select(models.StoredRecipe).where(
        models.StoredRecipe.id == recipe_id, models.StoredRecipe.user_id == str(user_id)
    )
    return db.scalars(stmt).first()


def load_recipe(db: Session, recipe_id: str, user_id: str) -> Optional[LoadedRecipe]:
    stored = get_stored_recipe(db, recipe_id, user_id)
    if stored is None:
        return None
    recipe = Recipe.model_validate({**(stored.document or {}), "id": stored.id, "name": stored.name})
    source = RecipeSource.model_validate(stored.source_json) if stored.source_json else None
    return LoadedRecipe(recipe=recipe, source=source)


def expire_stale_drafts(db: Session, now: Optional[datetime] = None, expiration_days: Optional[int] = None) -> int:
    """Move review-ready drafts older than the expiration window to EXPIRED. Safe to run repeatedly."""
    now = now or datetime.utcnow()
    days = expiration_days if expiration_days is not None else get_settings().ingest_draft_expiration_days
    window = timedelta(days=days)
    threshold = now - window
    stmt = select(models.IngestTask).where(
        models.IngestTask.status == IngestTaskStatus.REVIEW_READY.value,
        models.IngestTask.created_at < threshold,
    )
    candidates = list(db.scalars(stmt))
    logger.info("Found %d candidate drafts created before %s", len(candidates), threshold.isoformat())

    expired = 0
    for task in candidates:
        # state may have moved on since the query ran
        db.refresh(task)
        if task.status != IngestTaskStatus.REVIEW_READY.value:
            continue
        review_ready_at = task.review_ready_at or task.updated_at or task.created_at
        if now <= review_ready_at + window:
            continue
        task.status = IngestTaskStatus.EXPIRED.value
        task.current_phase = PHASE_EXPIRED
        task.status_message = f"Draft expired after {days} days (ReviewReady at {review_ready_at.isoformat()})"
        db.commit()
        expired += 1
        logger.info("Task %s expired; was review ready at %s", task.id, review_ready_at.isoformat())
    return expired
