from __future__ import annotations

import hashlib
import hmac
import logging
import os
import time
from pathlib import Path, PurePosixPath
from typing import Iterator
from urllib.parse import quote

import httpx

from ..errors import StorageUnavailable


def safe_key(key: str | None) -> str | None:
    """Normalize an object key to a bucket-relative POSIX path, or None if it escapes the root."""
    if not key:
        return None
    key = key.replace("\\", "/").lstrip("/")
    parts = PurePosixPath(key).parts
    if not parts or any(p in ("..", ".") for p in parts):
        return None
    return "/".join(parts)


class LocalObjectStorage:
    """Bucket-style object storage on the local filesystem.

    Read handles are HMAC-SHA256 signed URLs served by ``GET /storage/{key}``;
    ``fetch`` retrieves bytes over plain HTTP GET like any remote object store.
    """

    def __init__(self, root: Path, bucket: str, base_url: str, signing_key: str,
                 http_client: httpx.AsyncClient | None = None, fetch_timeout: float = 30.0):
        self.root = Path(root)
        self.bucket = bucket
        self.base_url = base_url.rstrip("/")
        self._signing_key = signing_key.encode()
        self.http = http_client
        self.fetch_timeout = fetch_timeout

    def _path(self, key: str | None) -> Path | None:
        rel = safe_key(key)
        if rel is None:
            return None
        return self.root / rel

    def put(self, name: str, data: bytes, replace: bool = True) -> str:
        """Store ``data`` under the bucket. With ``replace=False`` an existing object raises FileExistsError."""
        key = safe_key(f"{self.bucket}/{PurePosixPath(name).name}")
        if key is None:
            raise ValueError(f"invalid object name {name!r}")
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        if not replace:
            with path.open("xb") as f:
                f.write(data)
            return key
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        return key

    def exists(self, key: str | None) -> bool:
        path = self._path(key)
        return path is not None and path.is_file()

    def _sign(self, key: str, expires: int) -> str:
        msg = f"{key}\n{expires}".encode()
        return hmac.new(self._signing_key, msg, hashlib.sha256).hexdigest()

    def read_handle(self, key: str, ttl_seconds: int) -> str:
        rel = safe_key(key)
        if rel is None:
            raise StorageUnavailable("Invalid storage reference.")
        expires = int(time.time()) + int(ttl_seconds)
        return f"{self.base_url}/storage/{quote(rel)}?expires={expires}&signature={self._sign(rel, expires)}"

    def verify_handle(self, key: str, expires: int, signature: str) -> bool:
        rel = safe_key(key)
        if rel is None or expires < int(time.time()):
            return False
        return hmac.compare_digest(self._sign(rel, expires), signature or "")

    async def fetch(self, url: str) -> bytes:
        client = self.http
        if client is None:  # pragma: no cover - services always inject a shared client
            async with httpx.AsyncClient(timeout=self.fetch_timeout) as c:
                return await self._get(c, url)
        return await self._get(client, url)

    async def _get(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            r = await client.get(url, timeout=self.fetch_timeout)
            r.raise_for_status()
        except httpx.HTTPError as e:
            logging.warning("Object fetch failed for %s: %s", url.split("?", 1)[0], e)
            raise StorageUnavailable() from e
        return r.content

    def open_stream(self, key: str | None, chunk_size: int = 64 * 1024) -> Iterator[bytes] | None:
        """Chunk iterator over a stored object, or None when it is absent."""
        path = self._path(key)
        if path is None or not path.is_file():
            return None

        def _chunks() -> Iterator[bytes]:
            with path.open("rb") as f:
                while True:
                    chunk = f.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk

        return _chunks()
