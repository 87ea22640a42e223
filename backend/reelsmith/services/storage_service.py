"""Object storage backed by the local filesystem.

Keys look like bucket object names (``projects/<id>/clips/clip_0.mp4``) and
map onto files under ``settings.storage_dir``. Read handles carry an
HMAC-signed URL that the API serves until it expires.
"""
import asyncio
import hashlib
import hmac
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Set
from urllib.parse import quote

from reelsmith.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Object storage error."""
    pass


class SourceNotFoundError(StorageError):
    """The requested object does not exist."""
    pass


@dataclass
class ReadHandle:
    """Time-limited read access to a stored object."""
    key: str
    path: Path
    url: str
    expires_at: float

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at


class LocalObjectStore:
    """Bucket-like object store rooted at a local directory."""

    def __init__(
        self,
        root: Optional[Path] = None,
        bucket: Optional[str] = None,
        signing_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.root = Path(root or settings.storage_dir)
        self.bucket = bucket or settings.storage_bucket
        self._signing_key = (signing_key or settings.storage_signing_key).encode()
        self._base_url = (base_url or settings.public_base_url).rstrip("/")
        self._pending_deletes: Set[asyncio.Task] = set()
        self.root.mkdir(parents=True, exist_ok=True)

    def key_for(self, locator: str) -> str:
        """Normalize a ``gs://bucket/key`` locator or bare key to a key."""
        key = locator.strip()
        if key.startswith("gs://"):
            _, _, key = key[len("gs://"):].partition("/")
        key = key.lstrip("/")

        parts = PurePosixPath(key).parts
        if not key or ".." in parts:
            raise StorageError(f"Invalid storage locator: {locator}")
        return key

    def path_for(self, key: str) -> Path:
        return self.root / self.key_for(key)

    async def exists(self, locator: str) -> bool:
        return await asyncio.to_thread(self.path_for(locator).is_file)

    def signature(self, key: str, expires_at: int) -> str:
        message = f"{key}:{expires_at}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def verify_signature(self, key: str, expires_at: int, signature: str) -> bool:
        if expires_at < time.time():
            return False
        return hmac.compare_digest(self.signature(self.key_for(key), expires_at), signature)

    async def signed_handle(self, locator: str, ttl_seconds: int) -> ReadHandle:
        """
        Issue a read handle valid for ``ttl_seconds``.

        Raises:
            SourceNotFoundError: If the object does not exist
        """
        key = self.key_for(locator)
        path = self.path_for(key)
        if not await asyncio.to_thread(path.is_file):
            raise SourceNotFoundError(f"File not found in storage: {key}")

        expires_at = int(time.time() + ttl_seconds)
        url = (
            f"{self._base_url}/api/storage/{quote(key)}"
            f"?expires={expires_at}&signature={self.signature(key, expires_at)}"
        )
        return ReadHandle(key=key, path=path, url=url, expires_at=expires_at)

    async def upload(self, local_path: Path, key: str) -> str:
        """Copy a local file into the store and return its key."""
        key = self.key_for(key)
        destination = self.path_for(key)

        def _copy():
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, destination)

        try:
            await asyncio.to_thread(_copy)
        except OSError as e:
            raise StorageError(f"Upload of {key} failed: {e}")

        logger.debug(f"Uploaded {local_path} -> {key}")
        return key

    async def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True

    def schedule_delete(self, key: str, delay_seconds: float) -> asyncio.Task:
        """Delete ``key`` after a grace period, independent of any job."""
        task = asyncio.create_task(self._delete_later(key, delay_seconds))
        self._pending_deletes.add(task)
        task.add_done_callback(self._pending_deletes.discard)
        return task

    async def _delete_later(self, key: str, delay_seconds: float):
        await asyncio.sleep(delay_seconds)
        try:
            deleted = await self.delete(key)
            if deleted:
                logger.info(f"Deleted temporary object {key}")
        except (OSError, StorageError) as e:
            logger.warning(f"Scheduled deletion of {key} failed: {e}")

    @property
    def pending_deletes(self) -> int:
        return len(self._pending_deletes)

    async def close(self):
        """Cancel outstanding scheduled deletions."""
        for task in list(self._pending_deletes):
            task.cancel()
        if self._pending_deletes:
            await asyncio.gather(*self._pending_deletes, return_exceptions=True)
        self._pending_deletes.clear()
