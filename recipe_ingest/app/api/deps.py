from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.db.session import get_db
from recipe_ingest.app.schemas.auth import CurrentUser
from recipe_ingest.app.services.ingest.artifacts import get_artifact_store
from recipe_ingest.app.services.queue_service import enqueue_ingest_task
from recipe_ingest.app.services.storage.base import ArtifactStore

security = HTTPBearer(auto_error=True)


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    settings = get_settings()
    try:
        payload = jwt.decode(credentials.credentials, settings.auth_secret_key, algorithms=[settings.auth_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    sub = payload.get("sub")
    if sub is None or not str(sub).strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return CurrentUser(id=str(sub), email=payload.get("email"))


def get_db_session(db: Session = Depends(get_db)) -> Session:
    return db


def get_task_enqueuer() -> Callable[..., None]:
    return enqueue_ingest_task


def get_artifact_store_provider() -> ArtifactStore:
    return get_artifact_store()
