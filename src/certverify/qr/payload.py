from __future__ import annotations


def extract_cert_id(payload: str | None) -> str:
    """Return the text after the last '/' of a QR payload.

    ``https://host/verify/CERT-12345`` -> ``CERT-12345``. Payloads without a
    separator are returned whole; an empty result is treated as an unknown
    certificate by callers.
    """
    if not payload:
        return ""
    return payload.strip().rsplit("/", 1)[-1]
