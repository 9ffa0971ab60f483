import os
import logging
from typing import List, Optional
from docindex.storage.base import ObjectStore
from docindex.config.settings import settings

logger = logging.getLogger(__name__)

class LocalObjectStore(ObjectStore):
    """
    Implements ObjectStore on the local disk.
    - One directory per container, keys map to relative paths.
    - Holds uploads, extracted figures, page previews and stage checkpoints.
    """

    def __init__(self, root_path: Optional[str] = None):
        self.root_path = os.path.abspath(root_path or settings.storage.root_path)
        os.makedirs(self.root_path, exist_ok=True)

    def _path(self, key: str, container: str) -> str:
        container_root = os.path.join(self.root_path, container)
        path = os.path.abspath(os.path.join(container_root, key.lstrip("/")))
        if not path.startswith(container_root + os.sep):
            raise ValueError(f"Object key escapes container: {key}")
        return path

    async def upload(self, data: bytes, key: str, container: str) -> None:
        path = self._path(key, container)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        # Write then rename so readers never see a half-written checkpoint
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

    async def download(self, key: str, container: str) -> Optional[bytes]:
        path = self._path(key, container)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    async def delete(self, key: str, container: str) -> None:
        path = self._path(key, container)
        if os.path.exists(path):
            os.remove(path)

    async def list(self, prefix: str, container: str) -> List[str]:
        container_root = os.path.join(self.root_path, container)
        if not os.path.isdir(container_root):
            return []

        keys = []
        for dirpath, _, filenames in os.walk(container_root):
            for name in filenames:
                if name.endswith(".tmp"):
                    continue
                rel = os.path.relpath(os.path.join(dirpath, name), container_root)
                key = rel.replace(os.sep, "/")
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)
