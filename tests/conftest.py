import asyncio
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from certverify.api.main import app
from certverify.api.models import CertificateRecord
from certverify.api.services import build_services, get_services
from certverify.integrity.hashing import sha256_hex
from certverify.settings import Settings

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


class FakeLedger:
    """In-process ledger: anchored digests, optional failure or delay."""

    def __init__(self):
        self.anchored: set[str] = set()
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[str] = []

    async def is_anchored(self, digest_hex: str) -> bool:
        self.calls.append(digest_hex)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return digest_hex in self.anchored


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        certverify_data_dir=tmp_path / "data",
        storage_dir=tmp_path / "objects",
        storage_base_url="http://storage.test",
        storage_signing_key="test-signing-key",
    )


@pytest.fixture
def env(cfg):
    fetches: list[str] = []
    holder = {}

    def serve(request: httpx.Request) -> httpx.Response:
        # Stands in for GET /storage/{key}: same signature check, same bytes.
        fetches.append(str(request.url))
        storage = holder["storage"]
        key = request.url.path.removeprefix("/storage/")
        params = request.url.params
        if not storage.verify_handle(key, int(params.get("expires", "0")), params.get("signature", "")):
            return httpx.Response(403)
        chunks = storage.open_stream(key)
        if chunks is None:
            return httpx.Response(404)
        return httpx.Response(200, content=b"".join(chunks))

    http = httpx.AsyncClient(transport=httpx.MockTransport(serve))
    svc = build_services(cfg, http=http)
    holder["storage"] = svc.storage
    ledger = FakeLedger()
    svc.anchors.client = ledger
    svc.anchors.timeout = 0.5

    def issue(cert_id: str | None = None, data: bytes = PDF_BYTES, anchor: bool = True, **fields) -> CertificateRecord:
        if cert_id is None:
            rec = svc.records.create_draft("user-1", "company-1", "Blockchain 101", recipient_name="Ada", issuer_name="Acme")
        else:
            rec = CertificateRecord(cert_id=cert_id, owner_id="user-1", issuer_id="company-1",
                                    course_name="Blockchain 101", **fields)
            svc.records._write(rec)
        key = svc.storage.put(f"{rec.cert_id}.pdf", data)
        digest = sha256_hex(data)
        if anchor:
            ledger.anchored.add(digest)
        return svc.records.record_issuance(rec.cert_id, key, digest, "0xtx", "0xcontract")

    yield SimpleNamespace(svc=svc, records=svc.records, storage=svc.storage, ledger=ledger,
                          fetches=fetches, issue=issue, cfg=cfg)
    asyncio.run(svc.aclose())


@pytest.fixture
def client(env):
    app.dependency_overrides[get_services] = lambda: env.svc
    yield TestClient(app)
    app.dependency_overrides.clear()
