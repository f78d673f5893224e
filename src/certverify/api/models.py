from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Camel(BaseModel):
    # Wire format is camelCase (certId, txHash, ...); Python side stays snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CertificateStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Approved and rejected are terminal.
ALLOWED_TRANSITIONS: dict[CertificateStatus, set[CertificateStatus]] = {
    CertificateStatus.DRAFT: {CertificateStatus.PENDING, CertificateStatus.APPROVED, CertificateStatus.REJECTED},
    CertificateStatus.PENDING: {CertificateStatus.APPROVED, CertificateStatus.REJECTED},
    CertificateStatus.APPROVED: set(),
    CertificateStatus.REJECTED: set(),
}


class AnchorStatus(str, Enum):
    ANCHORED = "anchored"
    NOT_ANCHORED = "not_anchored"
    UNAVAILABLE = "unavailable"


class CertificateRecord(_Camel):
    cert_id: str
    owner_id: str
    issuer_id: str
    course_name: str
    recipient_name: str | None = None
    issuer_name: str | None = None
    issued_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: CertificateStatus = CertificateStatus.DRAFT
    storage_key: str | None = None  # bucket-relative object key of the PDF
    hash: str | None = None  # sha256 hex of the final artifact bytes
    tx_hash: str | None = None
    contract_address: str | None = None
    version: int = 0

    def issued(self) -> bool:
        return bool(self.storage_key and self.hash)

    def display(self) -> dict[str, Any]:
        """Metadata echoed back to verifiers."""
        return {
            "certId": self.cert_id,
            "recipientName": self.recipient_name,
            "courseName": self.course_name,
            "issuedDate": self.issued_date.isoformat().replace("+00:00", "Z"),
            "companyName": self.issuer_name or "N/A",
            "storageKey": self.storage_key,
            "hash": self.hash,
            "txHash": self.tx_hash,
            "contractAddress": self.contract_address,
        }


class VerificationResult(BaseModel):
    """Outcome of one verification; never persisted."""

    record: CertificateRecord
    computed_hash: str
    hash_match: bool
    anchor_status: AnchorStatus

    @property
    def overall_valid(self) -> bool:
        return self.hash_match and self.anchor_status is AnchorStatus.ANCHORED

    def message(self) -> str:
        if self.overall_valid:
            return "Certificate is valid (DB & Blockchain)."
        if not self.hash_match:
            return "Certificate is invalid or has been tampered with."
        if self.anchor_status is AnchorStatus.UNAVAILABLE:
            return "Certificate file matches the database, but blockchain verification is currently unavailable."
        return "Certificate hash is not anchored on the blockchain."

    def to_response(self) -> dict[str, Any]:
        return {
            "valid": self.overall_valid,
            "cert": self.record.display(),
            "dbVerification": self.hash_match,
            "blockchainVerification": {
                "valid": self.anchor_status is AnchorStatus.ANCHORED,
                "status": self.anchor_status.value,
                "txHash": self.record.tx_hash,
                "contractAddress": self.record.contract_address,
            },
            "message": self.message(),
        }


class DraftRequest(_Camel):
    # Optional at the model level so missing fields produce the service's own 400 shape.
    user_id: Optional[str] = None
    company_id: Optional[str] = None
    course_name: Optional[str] = None
    recipient_name: Optional[str] = None
    issuer_name: Optional[str] = None


class StatusChangeRequest(_Camel):
    expected_version: Optional[int] = None
