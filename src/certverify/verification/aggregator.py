from __future__ import annotations

import asyncio
import logging

from ..api.models import VerificationResult
from ..errors import NotFound
from ..integrity.hashing import HashVerifier, digests_match
from ..ledger.anchor import AnchorVerifier
from ..records.store import FileRecordStore


class VerificationAggregator:
    """Combine the database digest check and the ledger anchor check into one verdict."""

    def __init__(self, records: FileRecordStore, hashes: HashVerifier, anchors: AnchorVerifier,
                 ttl_seconds: int = 60):
        self.records = records
        self.hashes = hashes
        self.anchors = anchors
        self.ttl_seconds = ttl_seconds

    async def verify(self, cert_id: str) -> VerificationResult:
        record = self.records.get(cert_id)
        if record is None:
            raise NotFound()
        if not record.issued():
            raise NotFound("Certificate has not been issued yet.")

        # Both inputs are fixed at issuance, so the ledger lookup runs alongside the fetch.
        anchor_task = asyncio.ensure_future(self.anchors.check(record.hash))
        try:
            computed = await self.hashes.digest(record.storage_key, self.ttl_seconds)
        except BaseException:
            anchor_task.cancel()
            raise
        anchor_status = await anchor_task

        result = VerificationResult(
            record=record,
            computed_hash=computed,
            hash_match=digests_match(record.hash, computed),
            anchor_status=anchor_status,
        )
        logging.info(
            "Verified %s: hash_match=%s anchor=%s valid=%s",
            cert_id, result.hash_match, anchor_status.value, result.overall_valid,
        )
        return result
