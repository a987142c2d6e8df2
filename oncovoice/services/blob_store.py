"""
Blob storage for recordings, reference documents and narration clips.

Blobs live on the local filesystem and are served by the application under
the configured public base URL. URLs under that base are read back from disk;
any other URL is fetched over HTTP.
"""

import asyncio
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import httpx

from oncovoice.config import settings
from oncovoice.core.exceptions import BlobExistsError, BlobNotFoundError, StorageError, ValidationError
from oncovoice.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredBlob:
    url: str
    pathname: str
    content_type: str
    size: int


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def unique_suffix() -> str:
    """Short random tag keeping generated pathnames unique within a millisecond."""
    return secrets.token_hex(4)


class LocalBlobStore:
    """Write-once blob storage addressed by generated URLs."""

    def __init__(self, storage_dir: str = None, public_base_url: str = None, fetch_timeout: float = 30.0):
        self.storage_dir = Path(storage_dir or settings.blob_storage_dir).resolve()
        self.public_base_url = (public_base_url or settings.blob_public_base_url).rstrip("/")
        self.fetch_timeout = fetch_timeout
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    # --- Addressing ---

    def url_for(self, pathname: str) -> str:
        return f"{self.public_base_url}/{quote(pathname)}"

    def _local_path(self, pathname: str) -> Path:
        clean = PurePosixPath(pathname)
        if clean.is_absolute() or ".." in clean.parts or not clean.parts:
            raise ValidationError(f"Invalid blob pathname: {pathname}", field="pathname")
        return self.storage_dir.joinpath(*clean.parts)

    def pathname_for(self, url: str) -> Optional[str]:
        """Returns the blob pathname when `url` points into this store."""
        base_path = urlparse(self.public_base_url).path.rstrip("/")
        if url.startswith(self.public_base_url + "/"):
            return unquote(url[len(self.public_base_url) + 1:])
        # Relative URLs such as "/blobs/team-1-audio-1.m4a"
        if "://" not in url and base_path and url.startswith(base_path + "/"):
            return unquote(url[len(base_path) + 1:])
        return None

    # --- Operations ---

    async def put(self, pathname: str, data: bytes, content_type: str, overwrite: bool = False) -> StoredBlob:
        """
        Stores `data` under `pathname` and returns its public URL.
        An existing blob is never replaced unless `overwrite` is set.
        """
        path = self._local_path(pathname)
        try:
            await asyncio.to_thread(self._write, path, data, overwrite)
        except FileExistsError:
            logger.warning(f"Refusing to overwrite existing blob {pathname}")
            raise BlobExistsError(f"Blob already exists: {pathname}", details={"pathname": pathname})
        except OSError as e:
            logger.error(f"Failed to store blob {pathname}: {e}", exc_info=True)
            raise StorageError(f"Failed to store blob: {e}", details={"pathname": pathname})

        blob = StoredBlob(url=self.url_for(pathname), pathname=pathname, content_type=content_type, size=len(data))
        logger.info(f"Blob stored: {blob.url} ({blob.size} bytes, {content_type})")
        return blob

    @staticmethod
    def _write(path: Path, data: bytes, overwrite: bool) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.{unique_suffix()}.part")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if overwrite:
                os.replace(tmp_path, path)
            else:
                # link() fails with FileExistsError instead of replacing the target
                os.link(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    async def exists(self, url: str) -> bool:
        """
        Whether `url` can be served. Only blobs of this store are checked;
        external URLs are assumed reachable until they are fetched.
        """
        pathname = self.pathname_for(url)
        if pathname is None:
            return "://" in url
        return await asyncio.to_thread(self._local_path(pathname).is_file)

    async def fetch(self, url: str) -> bytes:
        """Returns the bytes behind `url`."""
        pathname = self.pathname_for(url)
        if pathname is not None:
            path = self._local_path(pathname)
            try:
                return await asyncio.to_thread(path.read_bytes)
            except FileNotFoundError:
                raise BlobNotFoundError(f"Blob not found: {pathname}", details={"url": url})
            except OSError as e:
                raise StorageError(f"Failed to read blob {pathname}: {e}", details={"url": url})

        if "://" not in url:
            raise BlobNotFoundError(f"Blob not found: {url}", details={"url": url})

        try:
            async with httpx.AsyncClient(timeout=self.fetch_timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to fetch {url}: {e}", details={"url": url})

        if response.status_code == 404:
            raise BlobNotFoundError(f"Blob not found: {url}", details={"url": url})
        if response.status_code >= 400:
            raise StorageError(
                f"Failed to fetch {url}: HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )
        return response.content

    async def is_writable(self) -> bool:
        return await asyncio.to_thread(os.access, self.storage_dir, os.W_OK)
