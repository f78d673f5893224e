from __future__ import annotations

import hashlib
import hmac

from ..storage.gateway import LocalObjectStorage


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def digests_match(expected: str | None, actual: str | None) -> bool:
    """Whole-digest equality; hex case is not significant."""
    if not expected or not actual:
        return False
    return hmac.compare_digest(expected.strip().lower(), actual.strip().lower())


class HashVerifier:
    def __init__(self, storage: LocalObjectStorage):
        self.storage = storage

    async def digest(self, storage_key: str, ttl_seconds: int) -> str:
        """Fetch the artifact through a fresh read handle and hash the exact bytes."""
        url = self.storage.read_handle(storage_key, ttl_seconds)
        data = await self.storage.fetch(url)
        return sha256_hex(data)
