from abc import ABC, abstractmethod
from typing import List, Optional


class ArtifactStore(ABC):
    """Byte store keyed by ``{thread_id}/{task_id}/{phase}/{artifact_type}`` paths."""

    @abstractmethod
    def write(self, key: str, data: bytes, content_type: str) -> str:  # pragma: no cover - interface
        """Persist ``data`` under ``key`` and return its URI."""
        raise NotImplementedError

    @abstractmethod
    def read(self, key: str) -> Optional[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def list(self, prefix: str) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError
