from pathlib import Path
from typing import List, Optional

from recipe_ingest.app.services.storage.base import ArtifactStore


class LocalArtifactStore(ArtifactStore):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Artifact key escapes the store root: {key}")
        return path

    def write(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path.as_uri()

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def list(self, prefix: str) -> List[str]:
        base = self._path(prefix.rstrip("/")) if prefix.strip("/") else self.root.resolve()
        if not base.exists():
            return []
        root = self.root.resolve()
        return sorted(p.relative_to(root).as_posix() for p in base.rglob("*") if p.is_file())

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
