"""Artifact integrity audit: recompute every issued certificate's digest from local storage.

Outputs CSV to stdout:
cert_id,storage_key,stored_hash,current_hash,status

status is one of ok, mismatch, missing. At end prints SUMMARY: tampered=<n> missing=<n>.
"""
from __future__ import annotations

import csv
import hashlib
import sys

from certverify.integrity.hashing import digests_match
from certverify.records.store import FileRecordStore
from certverify.settings import settings
from certverify.storage.gateway import LocalObjectStorage


def main():
    records = FileRecordStore(settings.certverify_data_dir)
    storage = LocalObjectStorage(settings.storage_dir, settings.storage_bucket, settings.storage_base_url,
                                 settings.storage_signing_key)
    out = csv.writer(sys.stdout, lineterminator="\n")
    out.writerow(["cert_id", "storage_key", "stored_hash", "current_hash", "status"])
    tampered = missing = 0
    for rec in records.list_all():
        if not rec.issued():
            continue
        chunks = storage.open_stream(rec.storage_key)
        if chunks is None:
            missing += 1
            out.writerow([rec.cert_id, rec.storage_key, rec.hash, "", "missing"])
            continue
        h = hashlib.sha256()
        for chunk in chunks:
            h.update(chunk)
        current = h.hexdigest()
        ok = digests_match(rec.hash, current)
        if not ok:
            tampered += 1
        out.writerow([rec.cert_id, rec.storage_key, rec.hash, current, "ok" if ok else "mismatch"])
    print(f"SUMMARY:tampered={tampered} missing={missing}")

if __name__ == "__main__":
    main()
