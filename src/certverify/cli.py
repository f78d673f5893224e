from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import httpx

from .errors import CertVerifyError
from .integrity.hashing import sha256_hex
from .qr.payload import extract_cert_id
from .qr.pipeline import QRDecodingPipeline, attempt_profiles
from .records.store import FileRecordStore
from .settings import settings
from .storage.gateway import LocalObjectStorage


def _storage() -> LocalObjectStorage:
    return LocalObjectStorage(settings.storage_dir, settings.storage_bucket, settings.storage_base_url,
                              settings.storage_signing_key)


def cmd_hash(ns: argparse.Namespace) -> int:
    path = Path(ns.file)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 2
    print(sha256_hex(path.read_bytes()))
    return 0


def cmd_scan(ns: argparse.Namespace) -> int:
    path = Path(ns.image)
    if not path.is_file():
        print(f"Image not found: {path}", file=sys.stderr)
        return 2
    pipeline = QRDecodingPipeline(profiles=attempt_profiles(settings.qr_max_attempts))
    try:
        outcome = pipeline.scan(path.read_bytes(), path.suffix)
    except ImportError as e:
        print(f"QR decoding unavailable: {e}", file=sys.stderr)
        return 1
    if not outcome.found:
        print(json.dumps({"qrData": None, "attempts": outcome.attempts, "suggestions": outcome.suggestions}, indent=2))
        return 2
    print(json.dumps({"qrData": outcome.payload, "certId": extract_cert_id(outcome.payload),
                      "attempts": outcome.attempts}, indent=2))
    return 0


def cmd_register(ns: argparse.Namespace) -> int:
    path = Path(ns.file)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 2
    data = path.read_bytes()
    records = FileRecordStore(settings.certverify_data_dir)
    existing = records.get(ns.cert_id)
    if existing is None:
        print(f"Unknown certificate: {ns.cert_id}", file=sys.stderr)
        return 2
    if existing.issued():
        # never overwrite an issued artifact; its digest is already recorded
        print(f"Certificate {ns.cert_id} already has an issued artifact.", file=sys.stderr)
        return 1
    try:
        key = _storage().put(f"{ns.cert_id}{path.suffix or '.pdf'}", data, replace=False)
    except FileExistsError:
        # another register run stored this artifact first
        print(f"Certificate {ns.cert_id} already has a stored artifact.", file=sys.stderr)
        return 1
    try:
        record = records.record_issuance(ns.cert_id, key, sha256_hex(data), ns.tx_hash, ns.contract_address)
    except CertVerifyError as e:
        print(e.message, file=sys.stderr)
        return 1
    print(json.dumps(record.model_dump(mode="json", by_alias=True), indent=2))
    return 0


def cmd_verify(ns: argparse.Namespace) -> int:
    try:
        r = httpx.get(f"{ns.api_url.rstrip('/')}/certificates/{ns.cert_id}/verify", timeout=ns.timeout)
        body = r.json()
    except (httpx.HTTPError, ValueError) as e:
        print(f"Verification request failed: {e}", file=sys.stderr)
        return 2
    print(json.dumps(body, indent=2))
    return 0 if body.get("valid") else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="certverify", description="Certificate verification tooling")
    sub = p.add_subparsers(dest="cmd", required=True)

    hash_p = sub.add_parser("hash", help="Print the SHA-256 hex digest of a file")
    hash_p.add_argument("file")
    hash_p.set_defaults(func=cmd_hash)

    scan_p = sub.add_parser("scan", help="Decode a certificate QR code from an image")
    scan_p.add_argument("image")
    scan_p.set_defaults(func=cmd_scan)

    reg_p = sub.add_parser("register", help="Store an issued artifact and record its digest")
    reg_p.add_argument("--cert-id", required=True)
    reg_p.add_argument("--file", required=True)
    reg_p.add_argument("--tx-hash")
    reg_p.add_argument("--contract-address", default=settings.ledger_contract_address)
    reg_p.set_defaults(func=cmd_register)

    verify_p = sub.add_parser("verify", help="Verify a certificate against a running API")
    verify_p.add_argument("cert_id")
    verify_p.add_argument("--api-url", default=settings.storage_base_url)
    verify_p.add_argument("--timeout", type=float, default=30.0)
    verify_p.set_defaults(func=cmd_verify)

    return p


def main(argv: list[str] | None = None) -> int:  # pragma: no cover - thin wrapper
    ns = build_parser().parse_args(argv)
    return ns.func(ns)

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
