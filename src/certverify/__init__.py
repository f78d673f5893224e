"""certverify package: verify issued certificates against their stored digest and ledger anchor.

The service reads certificate records, recomputes the SHA-256 digest of the
stored artifact through a short-lived signed handle, asks the ledger whether
the digest is anchored, decodes certificate QR codes from uploaded images and
streams bulk ZIP downloads.
"""
