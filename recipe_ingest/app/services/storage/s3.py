from typing import List, Optional

from recipe_ingest.app.services.storage.base import ArtifactStore
from recipe_ingest.app.storage import object_store


class S3ArtifactStore(ArtifactStore):
    def __init__(self, bucket: str, prefix: str = ""):
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def write(self, key: str, data: bytes, content_type: str) -> str:
        return object_store.put_bytes(self.bucket, self._key(key), content_type, data)

    def read(self, key: str) -> Optional[bytes]:
        return object_store.get_bytes(self.bucket, self._key(key))

    def list(self, prefix: str) -> List[str]:
        keys = object_store.list_keys(self.bucket, self._key(prefix))
        strip = f"{self.prefix}/" if self.prefix else ""
        return [k[len(strip) :] if strip and k.startswith(strip) else k for k in keys]

    def delete(self, key: str) -> None:
        object_store.delete_key(self.bucket, self._key(key))
