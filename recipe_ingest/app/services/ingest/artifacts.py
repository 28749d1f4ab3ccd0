"""Per-task artifact persistence for the ingest pipeline."""

import json
import logging
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import BaseModel

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.schemas.ingest import ArtifactRef
from recipe_ingest.app.services.storage.base import ArtifactStore
from recipe_ingest.app.services.storage.local import LocalArtifactStore
from recipe_ingest.app.services.storage.s3 import S3ArtifactStore

logger = logging.getLogger(__name__)

RAW_HTML = "raw.html"
SANITIZED_TEXT = "sanitized.txt"
PAGE_META = "page_meta.json"
JSON_LD = "jsonld.json"
EXTRACTION = "extraction.json"
RECIPE = "recipe.json"
VALIDATION = "validation.json"
SIMILARITY = "similarity.json"
REPAIR = "repair.json"
NORMALIZE_PATCH = "normalize.patch.json"
NORMALIZE_DIFF = "normalize.diff.md"

_CONTENT_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
    ".md": "text/markdown; charset=utf-8",
    ".json": "application/json",
}

TRUNCATION_MARKER = b"\n...[artifact truncated]"


def artifact_key(thread_id: str, task_id: str, phase: str, artifact_type: str) -> str:
    return f"{thread_id}/{task_id}/{phase}/{artifact_type}"


def content_type_for(artifact_type: str) -> str:
    for suffix, content_type in _CONTENT_TYPES.items():
        if artifact_type.endswith(suffix):
            return content_type
    return "application/octet-stream"


@lru_cache
def get_artifact_store() -> ArtifactStore:
    settings = get_settings()
    if settings.artifact_s3_bucket:
        logger.info("Using S3 artifact store s3://%s/%s", settings.artifact_s3_bucket, settings.artifact_s3_prefix)
        return S3ArtifactStore(settings.artifact_s3_bucket, settings.artifact_s3_prefix)
    return LocalArtifactStore(settings.artifact_root)


class TaskArtifacts:
    """Writes, reads and lists the artifacts of one task.

    Artifacts larger than ``max_bytes`` are cut and marked; rewriting the same
    artifact overwrites it, so re-running a phase is idempotent.
    """

    def __init__(
        self,
        thread_id: str,
        task_id: str,
        store: Optional[ArtifactStore] = None,
        max_bytes: Optional[int] = None,
    ):
        self.thread_id = thread_id
        self.task_id = task_id
        self.store = store or get_artifact_store()
        self.max_bytes = max_bytes if max_bytes is not None else get_settings().ingest_max_artifact_size_bytes

    @property
    def prefix(self) -> str:
        return f"{self.thread_id}/{self.task_id}/"

    def write_text(self, phase: str, artifact_type: str, text: str) -> ArtifactRef:
        data = (text or "").encode("utf-8")
        if self.max_bytes and len(data) > self.max_bytes:
            logger.warning(
                "Artifact %s for task %s is %d bytes; truncating to %d",
                artifact_type,
                self.task_id,
                len(data),
                self.max_bytes,
            )
            data = data[: self.max_bytes - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
        key = artifact_key(self.thread_id, self.task_id, phase, artifact_type)
        uri = self.store.write(key, data, content_type_for(artifact_type))
        logger.debug("Stored artifact %s (%d bytes)", key, len(data))
        return ArtifactRef(type=artifact_type, uri=uri)

    def write_json(self, phase: str, artifact_type: str, value: Any) -> ArtifactRef:
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json", by_alias=True)
        return self.write_text(phase, artifact_type, json.dumps(value, indent=2, ensure_ascii=False, default=str))

    def read_text(self, phase: str, artifact_type: str) -> Optional[str]:
        data = self.store.read(artifact_key(self.thread_id, self.task_id, phase, artifact_type))
        return data.decode("utf-8", errors="replace") if data is not None else None

    def list(self) -> List[ArtifactRef]:
        return [ArtifactRef(type=key.rsplit("/", 1)[-1], uri=key) for key in self.store.list(self.prefix)]

    def delete_all(self) -> int:
        keys = self.store.list(self.prefix)
        for key in keys:
            self.store.delete(key)
        return len(keys)
