from __future__ import annotations

import logging
import os
import re
import threading
import time
from pathlib import Path

from ..api.models import ALLOWED_TRANSITIONS, CertificateRecord, CertificateStatus
from ..errors import InvalidInput, InvalidTransition, NotFound

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class FileRecordStore:
    """Certificate records as one JSON document per certId.

    Reads are lock-free; every write goes through a single store lock so that
    status transitions behave as compare-and-swap.
    """

    def __init__(self, data_dir: Path):
        self.root = Path(data_dir) / "records"
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, cert_id: str) -> Path | None:
        if not cert_id or not _SAFE_ID.match(cert_id):
            return None
        return self.root / f"{cert_id}.json"

    def _write(self, record: CertificateRecord) -> None:
        path = self._path(record.cert_id)
        if path is None:
            raise InvalidInput(f"invalid certificate id {record.cert_id!r}")
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(record.model_dump_json(indent=2))
        os.replace(tmp, path)

    def get(self, cert_id: str) -> CertificateRecord | None:
        path = self._path(cert_id)
        if path is None or not path.exists():
            return None
        return CertificateRecord.model_validate_json(path.read_text())

    def list_all(self) -> list[CertificateRecord]:
        records = []
        for p in self.root.glob("*.json"):
            try:
                records.append(CertificateRecord.model_validate_json(p.read_text()))
            except Exception:  # noqa: S112 - tolerate malformed but log
                logging.exception("Failed to parse certificate record %s", p)
                continue
        records.sort(key=lambda r: r.issued_date, reverse=True)
        return records

    def list_by_owner(self, owner_id: str) -> list[CertificateRecord]:
        return [r for r in self.list_all() if r.owner_id == owner_id]

    def create_draft(
        self,
        owner_id: str,
        issuer_id: str,
        course_name: str,
        recipient_name: str | None = None,
        issuer_name: str | None = None,
    ) -> CertificateRecord:
        with self._lock:
            stamp = int(time.time() * 1000)
            # certIds are never reused, even after rejection
            while self._path(f"CERT-{stamp}").exists():
                stamp += 1
            record = CertificateRecord(
                cert_id=f"CERT-{stamp}",
                owner_id=owner_id,
                issuer_id=issuer_id,
                course_name=course_name,
                recipient_name=recipient_name,
                issuer_name=issuer_name,
            )
            self._write(record)
        logging.info("Created certificate draft %s for owner %s", record.cert_id, owner_id)
        return record

    def update_status(
        self,
        cert_id: str,
        new_status: CertificateStatus,
        expected_version: int | None = None,
    ) -> CertificateRecord:
        with self._lock:
            record = self.get(cert_id)
            if record is None:
                raise NotFound()
            if expected_version is not None and expected_version != record.version:
                raise InvalidTransition(
                    f"Certificate {cert_id} was modified concurrently (version {record.version})."
                )
            if new_status not in ALLOWED_TRANSITIONS[record.status]:
                raise InvalidTransition(
                    f"Certificate {cert_id} cannot move from {record.status.value} to {new_status.value}."
                )
            updated = record.model_copy(update={"status": new_status, "version": record.version + 1})
            self._write(updated)
        logging.info("Certificate %s status %s -> %s", cert_id, record.status.value, new_status.value)
        return updated

    def record_issuance(
        self,
        cert_id: str,
        storage_key: str,
        digest_hex: str,
        tx_hash: str | None = None,
        contract_address: str | None = None,
    ) -> CertificateRecord:
        """Attach the final artifact and its digest; allowed once per record."""
        with self._lock:
            record = self.get(cert_id)
            if record is None:
                raise NotFound()
            if record.hash is not None:
                raise InvalidTransition(f"Certificate {cert_id} already has an issued artifact.")
            updated = record.model_copy(update={
                "storage_key": storage_key,
                "hash": digest_hex.lower(),
                "tx_hash": tx_hash,
                "contract_address": contract_address,
                "version": record.version + 1,
            })
            self._write(updated)
        return updated

