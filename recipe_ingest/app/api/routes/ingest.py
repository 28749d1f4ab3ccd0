import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from recipe_ingest.app.api.deps import (
    get_artifact_store_provider,
    get_current_user,
    get_db_session,
    get_task_enqueuer,
)
from recipe_ingest.app.api.errors import IngestRequestError
from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.db import models
from recipe_ingest.app.schemas.auth import CurrentUser
from recipe_ingest.app.schemas.ingest import (
    ApplyPatchRequest,
    ArtifactRef,
    IngestMode,
    IngestPayload,
    IngestTaskCreate,
    IngestTaskRead,
    NormalizePatchResult,
    RejectRequest,
    TaskActionResponse,
)
from recipe_ingest.app.schemas.recipe import StoredRecipeRead
from recipe_ingest.app.services import task_service
from recipe_ingest.app.services.ingest.artifacts import TaskArtifacts
from recipe_ingest.app.services.ingest.policy import is_committable
from recipe_ingest.app.services.ingest.search import get_search_resolver
from recipe_ingest.app.services.ingest.search.resolver import SearchProviderDescriptor
from recipe_ingest.app.services.ingest.ssrf import validate_url
from recipe_ingest.app.services.storage.base import ArtifactStore
from recipe_ingest.app.services.task_service import IngestTaskStatus, TaskStateError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["ingest"])


def check_payload(payload: IngestPayload) -> None:
    """Mode-specific checks that fail the request before anything is queued."""
    if payload.mode == IngestMode.URL:
        if not payload.url or not payload.url.strip():
            raise IngestRequestError("MISSING_URL", "URL is required for Url mode.", field="payload.url")
        validation = validate_url(payload.url)
        if not validation.ok:
            raise IngestRequestError(
                "INVALID_URL", validation.error_message or "Invalid URL.", field="payload.url", reason=validation.error_code
            )
    elif payload.mode == IngestMode.QUERY:
        if not payload.query or not payload.query.strip():
            raise IngestRequestError("MISSING_QUERY", "Query is required for Query mode.", field="payload.query")
    elif payload.mode == IngestMode.NORMALIZE:
        if not payload.recipe_id or not payload.recipe_id.strip():
            raise IngestRequestError(
                "MISSING_RECIPE_ID", "Recipe ID is required for Normalize mode.", field="payload.recipeId"
            )


def _task_read(task: models.IngestTask) -> IngestTaskRead:
    read = IngestTaskRead.model_validate(task)
    draft = task_service.get_draft(task) if task.status == IngestTaskStatus.REVIEW_READY.value else None
    if draft is not None:
        read.committable = is_committable(draft, get_settings().guardrail_block_commit_on_warning)
    return read


def _get_task_or_404(db: Session, task_id: str, user: CurrentUser) -> models.IngestTask:
    task = task_service.get_task_for_user(db, task_id, user.id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


def _conflict(exc: TaskStateError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"error_code": exc.code, "message": exc.message, "status": exc.status},
    )


@router.post("/tasks", response_model=IngestTaskRead, status_code=status.HTTP_201_CREATED)
def create_ingest_task(
    body: IngestTaskCreate,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    enqueue: Callable[..., None] = Depends(get_task_enqueuer),
):
    check_payload(body.payload)
    task = task_service.create_task(db, current_user.id, body.payload, body.thread_id)
    try:
        enqueue(task.id, task.thread_id)
    except Exception as exc:
        task_service.mark_failed(db, task, "QUEUE_UNAVAILABLE", f"Failed to enqueue task: {exc}", None)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Task queue unavailable")
    return _task_read(task)


@router.get("/tasks/{task_id}", response_model=IngestTaskRead)
def get_ingest_task(
    task_id: str,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    logger.debug("get_ingest_task: user_id=%s, task_id=%s", current_user.id, task_id)
    return _task_read(_get_task_or_404(db, task_id, current_user))


@router.post("/tasks/{task_id}/cancel", response_model=TaskActionResponse)
def cancel_ingest_task(
    task_id: str,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    task = _get_task_or_404(db, task_id, current_user)
    if not task_service.mark_canceled(db, task):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Task cannot be canceled")
    return TaskActionResponse(task_id=task.id, status=task.status, message="Cancel requested")


@router.post("/tasks/{task_id}/commit", response_model=StoredRecipeRead)
def commit_ingest_task(
    task_id: str,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    task = _get_task_or_404(db, task_id, current_user)
    try:
        stored = task_service.commit_task(db, task)
    except TaskStateError as exc:
        raise _conflict(exc)
    return StoredRecipeRead.model_validate(stored)


@router.post("/tasks/{task_id}/reject", response_model=TaskActionResponse)
def reject_ingest_task(
    task_id: str,
    body: Optional[RejectRequest] = None,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    task = _get_task_or_404(db, task_id, current_user)
    try:
        message = task_service.reject_task(db, task, body.reason if body else None)
    except TaskStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": exc.code, "message": exc.message, "status": exc.status},
        )
    return TaskActionResponse(task_id=task.id, status=task.status, message=message)


@router.post("/tasks/{task_id}/normalize/apply", response_model=NormalizePatchResult)
def apply_normalize_patches(
    task_id: str,
    body: ApplyPatchRequest,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    task = _get_task_or_404(db, task_id, current_user)
    try:
        return task_service.apply_normalize_patches(db, task, body.patch_indices, body.max_risk_level)
    except TaskStateError as exc:
        raise _conflict(exc)


@router.get("/tasks/{task_id}/artifacts", response_model=List[ArtifactRef])
def list_task_artifacts(
    task_id: str,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    store: ArtifactStore = Depends(get_artifact_store_provider),
):
    task = _get_task_or_404(db, task_id, current_user)
    return TaskArtifacts(task.thread_id, task.id, store).list()


@router.get("/search/providers", response_model=List[SearchProviderDescriptor])
def list_search_providers(current_user: CurrentUser = Depends(get_current_user)):
    return get_search_resolver().list_enabled()
