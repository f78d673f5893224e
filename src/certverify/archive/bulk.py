from __future__ import annotations

import logging
import zipfile
from pathlib import PurePosixPath
from typing import Any, Iterator

from ..errors import InvalidInput
from ..records.store import FileRecordStore
from ..storage.gateway import LocalObjectStorage


class _ChunkSink:
    """Write-only file object; zipfile switches to streaming mode (data descriptors) when it cannot tell/seek."""

    def __init__(self):
        self._chunks: list[bytes] = []

    def write(self, b) -> int:
        self._chunks.append(bytes(b))
        return len(b)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def validate_cert_ids(payload: Any) -> list[str]:
    if not isinstance(payload, list) or not payload:
        raise InvalidInput("Certificate IDs required.")
    if not all(isinstance(x, str) for x in payload):
        raise InvalidInput("Certificate IDs must be strings.")
    return payload


def entry_name(cert_id: str, storage_key: str | None) -> str:
    ext = PurePosixPath(storage_key or "").suffix.lstrip(".").lower() or "pdf"
    return f"certificate-{cert_id}.{ext}"


class BulkArchiver:
    def __init__(self, records: FileRecordStore, storage: LocalObjectStorage, chunk_size: int = 64 * 1024):
        self.records = records
        self.storage = storage
        self.chunk_size = chunk_size

    def stream(self, cert_ids: list[str]) -> Iterator[bytes]:
        """Yield a ZIP archive incrementally; ids without a record or file are skipped.

        Plain generator: file reads and deflate block, so StreamingResponse drives it from its threadpool.
        """
        sink = _ChunkSink()
        added = 0
        seen: set[str] = set()
        with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            for cert_id in cert_ids:
                if cert_id in seen:
                    continue
                seen.add(cert_id)
                record = self.records.get(cert_id)
                if record is None or not record.storage_key:
                    logging.warning("Bulk download: skipping %s (no certificate record or file reference)", cert_id)
                    continue
                chunks = self.storage.open_stream(record.storage_key, self.chunk_size)
                if chunks is None:
                    logging.warning("Bulk download: skipping %s (file %s missing)", cert_id, record.storage_key)
                    continue
                with zf.open(entry_name(cert_id, record.storage_key), "w") as dest:
                    for chunk in chunks:
                        dest.write(chunk)
                        data = sink.drain()
                        if data:
                            yield data
                added += 1
                data = sink.drain()
                if data:
                    yield data
        logging.info("Bulk download finished: %d of %d requested certificates archived", added, len(cert_ids))
        data = sink.drain()
        if data:
            yield data
