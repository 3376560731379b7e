from __future__ import annotations

import re
from pathlib import Path

from .settings import UPLOAD_DIR, UPLOAD_URL_PREFIX

SAFE_KEY_RE = re.compile(r"[^\w.\-]+", re.UNICODE)


class ObjectStorage:
    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        """Store ``data`` under ``key`` (overwriting) and return its public URL."""
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    def __init__(self, root: Path = UPLOAD_DIR, url_prefix: str = UPLOAD_URL_PREFIX) -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        safe_key = SAFE_KEY_RE.sub("-", key).strip(".-")
        if not safe_key:
            raise ValueError("Storage key is empty")
        destination = self.root / safe_key
        destination.write_bytes(data)
        return f"{self.url_prefix}/{safe_key}"
