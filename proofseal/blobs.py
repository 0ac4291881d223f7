"""
Content-addressed blob stores for encrypted documents.

The blob store is untrusted between writes and reads: everything it
returns is re-checked against the recorded ciphertext hash before use.
"""

import logging
import os
import re
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import requests

from . import config
from .errors import ValidationError
from .util import sha256_hex

logger = logging.getLogger(__name__)

SHA256_HEX_PATTERN = re.compile(r'^[a-f0-9]{64}$')


@dataclass(frozen=True)
class StoredBlob:
    """Where an uploaded blob can be found again."""
    content_id: str
    storage_url: str


class BlobStore(ABC):
    """Opaque blob storage: put bytes, get them back by content id."""

    @abstractmethod
    def put(self, data: bytes, name: str) -> StoredBlob:
        """Store ``data``; ``name`` is informational only."""

    @abstractmethod
    def get(self, content_id: str) -> Optional[bytes]:
        """Return the stored bytes, or None if absent."""


class InMemoryBlobStore(BlobStore):
    """Process-local blob store for tests and development."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._names: Dict[str, str] = {}
        self._lock = threading.RLock()

    def put(self, data: bytes, name: str) -> StoredBlob:
        content_id = f"blob_{uuid.uuid4().hex}"
        with self._lock:
            self._blobs[content_id] = bytes(data)
            self._names[content_id] = name
        logger.debug("Stored %s (%d bytes) as %s", name, len(data), content_id)
        return StoredBlob(content_id=content_id, storage_url=f"memory://blobs/{content_id}")

    def get(self, content_id: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(content_id)

    def count(self) -> int:
        with self._lock:
            return len(self._blobs)


class FileSystemBlobStore(BlobStore):
    """
    Blobs stored as files under a directory, addressed by the SHA-256
    of their content. Writes are atomic (temp file + rename).
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, content_id: str) -> Path:
        if not SHA256_HEX_PATTERN.match(content_id or ""):
            raise ValidationError("content_id", "must be 64 lowercase hexadecimal characters")
        return self.root / content_id[:2] / content_id

    def put(self, data: bytes, name: str) -> StoredBlob:
        content_id = sha256_hex(data)
        path = self._path(content_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

        logger.debug("Stored %s (%d bytes) at %s", name, len(data), path)
        return StoredBlob(content_id=content_id, storage_url=path.resolve().as_uri())

    def get(self, content_id: str) -> Optional[bytes]:
        path = self._path(content_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def count(self) -> int:
        if not self.root.exists():
            return 0
        return sum(1 for p in self.root.glob("*/*") if not p.name.startswith(".tmp-"))


class WalrusBlobStore(BlobStore):
    """
    Walrus HTTP client.

    Stores through a publisher (``PUT /v1/blobs?epochs=N``) and reads
    through an aggregator (``GET /v1/blobs/{blob_id}``).
    Docs: https://docs.wal.app/usage/web-api.html
    """

    def __init__(
        self,
        publisher_url: str,
        aggregator_url: str,
        epochs: int = 5,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        if not publisher_url or not aggregator_url:
            raise ValidationError("walrus", "publisher and aggregator URLs are required")
        self.publisher_url = publisher_url.rstrip("/")
        self.aggregator_url = aggregator_url.rstrip("/")
        self.epochs = epochs
        self.timeout = timeout
        self.session = session or requests.Session()

    def blob_url(self, blob_id: str) -> str:
        return f"{self.aggregator_url}/v1/blobs/{blob_id}"

    def put(self, data: bytes, name: str) -> StoredBlob:
        r = self.session.put(
            f"{self.publisher_url}/v1/blobs",
            params={"epochs": self.epochs},
            data=data,
            timeout=self.timeout
        )
        r.raise_for_status()
        body = r.json()

        if "newlyCreated" in body:
            blob_id = body["newlyCreated"]["blobObject"]["blobId"]
        elif "alreadyCertified" in body:
            blob_id = body["alreadyCertified"]["blobId"]
        else:
            raise ValueError(f"Unexpected Walrus publisher response: {sorted(body)}")

        logger.info("Uploaded %s (%d bytes) to Walrus as %s", name, len(data), blob_id)
        return StoredBlob(content_id=blob_id, storage_url=self.blob_url(blob_id))

    def get(self, content_id: str) -> Optional[bytes]:
        r = self.session.get(self.blob_url(content_id), timeout=self.timeout)
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return r.content


def get_blob_store() -> BlobStore:
    """Create the blob store selected by configuration."""
    backend = config.BLOB_BACKEND
    if backend == "filesystem":
        return FileSystemBlobStore(config.BLOB_DIR)
    if backend == "walrus":
        return WalrusBlobStore(
            publisher_url=config.WALRUS_PUBLISHER_URL,
            aggregator_url=config.WALRUS_AGGREGATOR_URL,
            epochs=config.WALRUS_EPOCHS,
            timeout=config.WALRUS_TIMEOUT_SECONDS
        )
    return InMemoryBlobStore()
