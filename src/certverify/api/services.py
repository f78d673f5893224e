from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request

from ..archive.bulk import BulkArchiver
from ..integrity.hashing import HashVerifier
from ..ledger.anchor import AnchorVerifier, EthRpcLedgerClient, UnconfiguredLedgerClient
from ..qr.pipeline import QRDecodingPipeline, attempt_profiles
from ..records.store import FileRecordStore
from ..settings import Settings
from ..storage.gateway import LocalObjectStorage
from ..verification.aggregator import VerificationAggregator


@dataclass
class Services:
    """Process-wide service handles: built once at startup, shared read-only by requests."""

    records: FileRecordStore
    storage: LocalObjectStorage
    anchors: AnchorVerifier
    verifier: VerificationAggregator
    archiver: BulkArchiver
    qr: QRDecodingPipeline
    http: httpx.AsyncClient | None = None

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()


def build_services(cfg: Settings, http: httpx.AsyncClient | None = None) -> Services:
    http = http or httpx.AsyncClient(timeout=cfg.fetch_timeout_seconds)
    records = FileRecordStore(cfg.certverify_data_dir)
    storage = LocalObjectStorage(
        cfg.storage_dir,
        cfg.storage_bucket,
        cfg.storage_base_url,
        cfg.storage_signing_key,
        http_client=http,
        fetch_timeout=cfg.fetch_timeout_seconds,
    )
    if cfg.ledger_configured():
        ledger = EthRpcLedgerClient(cfg.ledger_rpc_url, cfg.ledger_contract_address, cfg.ledger_verify_selector, http)
    else:
        ledger = UnconfiguredLedgerClient()
    anchors = AnchorVerifier(ledger, timeout_seconds=cfg.ledger_timeout_seconds)
    return Services(
        records=records,
        storage=storage,
        anchors=anchors,
        verifier=VerificationAggregator(records, HashVerifier(storage), anchors, ttl_seconds=cfg.verify_url_ttl_seconds),
        archiver=BulkArchiver(records, storage, chunk_size=cfg.bulk_chunk_size),
        qr=QRDecodingPipeline(profiles=attempt_profiles(cfg.qr_max_attempts)),
        http=http,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
