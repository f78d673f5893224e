from __future__ import annotations

import logging
import mimetypes
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Body, Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from ..archive.bulk import entry_name, validate_cert_ids
from ..errors import CertVerifyError, DecodeExhausted, InternalError, InvalidInput, NotFound, StorageUnavailable
from ..qr.payload import extract_cert_id
from ..settings import settings
from .models import CertificateRecord, CertificateStatus, DraftRequest, StatusChangeRequest
from .services import Services, build_services, get_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services(settings)
    app.state.services = services
    try:
        yield
    finally:
        await services.aclose()


app = FastAPI(title="Certificate Verification Service", lifespan=lifespan)


@app.exception_handler(CertVerifyError)
async def certverify_error_handler(request: Request, exc: CertVerifyError):
    body: dict[str, Any] = {"success": False, "message": exc.message}
    if isinstance(exc, DecodeExhausted):
        body["suggestions"] = exc.suggestions
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # field-level parser details and raw input stay in the log
    logging.info("Malformed request on %s %s: %s", request.method, request.url.path, exc.errors())
    return await certverify_error_handler(request, InvalidInput("Malformed request."))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logging.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = InternalError()
    return JSONResponse(status_code=err.status_code, content={"success": False, "message": err.message})


def _record_json(record: CertificateRecord) -> dict:
    return record.model_dump(mode="json", by_alias=True)


def _attachment(name: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{name}"'}


async def _verification_response(svc: Services, cert_id: str, extra: dict | None = None):
    """Run a full verification and shape it, keeping the `valid` field on failures too."""
    try:
        result = await svc.verifier.verify(cert_id)
    except (NotFound, StorageUnavailable) as e:
        return JSONResponse(status_code=e.status_code, content={"valid": False, "message": e.message, **(extra or {})})
    except Exception:
        logging.exception("Verification failed for %s", cert_id)
        return JSONResponse(status_code=500, content={"valid": False, "message": "Verification failed.", **(extra or {})})
    return {**result.to_response(), **(extra or {})}


async def _scan_upload(svc: Services, image: UploadFile | None) -> str:
    if image is None or not (image.content_type or "").startswith("image/"):
        raise InvalidInput("Invalid or missing image file.")
    data = await image.read()
    if not data:
        raise InvalidInput("Invalid or missing image file.")
    if len(data) > settings.qr_max_upload_bytes:
        raise InvalidInput("Image file is too large.")
    outcome = await run_in_threadpool(svc.qr.scan, data, Path(image.filename or "").suffix)
    if not outcome.found:
        raise DecodeExhausted(suggestions=outcome.suggestions)
    logging.info("[ScanQR] QR data extracted after %d attempt(s)", outcome.attempts)
    return outcome.payload


@app.get("/health")
@app.get("/healthz")  # alias for k8s style probes
def health():
    return {"ok": True}


# --- Verification ---

@app.get("/certificates/{cert_id}/verify")
async def verify_certificate(cert_id: str, svc: Services = Depends(get_services)):
    return await _verification_response(svc, cert_id)


@app.post("/qr/scan")
async def scan_qr(image: UploadFile | None = File(None), svc: Services = Depends(get_services)):
    payload = await _scan_upload(svc, image)
    return {"success": True, "qrData": payload}


@app.get("/qr/verify")
def verify_qr_payload(data: str | None = None, svc: Services = Depends(get_services)):
    """Look up the certificate named by a scanned QR payload."""
    if not data:
        raise InvalidInput("Missing QR data.")
    cert_id = extract_cert_id(data)
    record = svc.records.get(cert_id)
    if record is None:
        logging.warning("[VERIFY QR] Certificate not found for certId %r", cert_id)
        raise NotFound()
    return {"success": True, "certificate": _record_json(record)}


@app.post("/qr/verify")
async def verify_qr_image(image: UploadFile | None = File(None), svc: Services = Depends(get_services)):
    """Scan an uploaded image and run the full hash + ledger verification on the decoded certificate."""
    payload = await _scan_upload(svc, image)
    return await _verification_response(svc, extract_cert_id(payload), {"qrData": payload})


# --- Retrieval ---

@app.get("/certificates/{cert_id}/download")
def download_certificate(cert_id: str, svc: Services = Depends(get_services)):
    record = svc.records.get(cert_id)
    if record is None or not record.storage_key:
        raise NotFound()
    chunks = svc.storage.open_stream(record.storage_key, settings.bulk_chunk_size)
    if chunks is None:
        raise NotFound("PDF file not found.")
    name = entry_name(cert_id, record.storage_key)
    media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return StreamingResponse(chunks, media_type=media_type, headers=_attachment(name))


@app.post("/certificates/bulk-download")
def bulk_download(body: Any = Body(None), svc: Services = Depends(get_services)):  # noqa: B008 FastAPI dependency pattern
    cert_ids = validate_cert_ids(body.get("certIds") if isinstance(body, dict) else None)
    return StreamingResponse(
        svc.archiver.stream(cert_ids),
        media_type="application/zip",
        headers=_attachment("certificates.zip"),
    )


@app.get("/certificates/{cert_id}/download-url")
def download_url(cert_id: str, svc: Services = Depends(get_services)):
    record = svc.records.get(cert_id)
    if record is None or not record.storage_key:
        raise NotFound()
    url = svc.storage.read_handle(record.storage_key, settings.download_url_ttl_seconds)
    return {"success": True, "url": url}


@app.get("/storage/{key:path}")
def read_object(key: str, expires: int = 0, signature: str = "", svc: Services = Depends(get_services)):
    if not svc.storage.verify_handle(key, expires, signature):
        return JSONResponse(status_code=403, content={"success": False, "message": "Invalid or expired signature."})
    chunks = svc.storage.open_stream(key, settings.bulk_chunk_size)
    if chunks is None:
        raise NotFound("File not found.")
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return StreamingResponse(chunks, media_type=media_type)


# --- Records (drafts, admin status changes, listings) ---

@app.post("/certificates/drafts", status_code=201)
def create_draft(req: DraftRequest, svc: Services = Depends(get_services)):
    if not (req.user_id and req.company_id and req.course_name):
        raise InvalidInput("userId, companyId, and courseName are required.")
    record = svc.records.create_draft(
        req.user_id, req.company_id, req.course_name,
        recipient_name=req.recipient_name, issuer_name=req.issuer_name,
    )
    return {"success": True, "message": "Certificate draft created.", "certificate": _record_json(record)}


@app.get("/certificates")
def list_certificates(owner_id: str | None = Query(None, alias="ownerId"), svc: Services = Depends(get_services)):
    records = svc.records.list_by_owner(owner_id) if owner_id else svc.records.list_all()
    return {
        "success": True,
        "message": "No certificates found." if not records else "Certificates retrieved successfully.",
        "certificates": [_record_json(r) for r in records],
    }


def _change_status(svc: Services, cert_id: str, status: CertificateStatus, req: StatusChangeRequest | None, message: str):
    record = svc.records.update_status(cert_id, status, expected_version=req.expected_version if req else None)
    return {"success": True, "message": message, "certificate": _record_json(record)}


@app.post("/certificates/{cert_id}/submit")
def submit_certificate(cert_id: str, req: StatusChangeRequest | None = None, svc: Services = Depends(get_services)):
    return _change_status(svc, cert_id, CertificateStatus.PENDING, req, "Certificate submitted for approval.")


@app.post("/certificates/{cert_id}/approve")
def approve_certificate(cert_id: str, req: StatusChangeRequest | None = None, svc: Services = Depends(get_services)):
    return _change_status(svc, cert_id, CertificateStatus.APPROVED, req, "Certificate approved.")


@app.post("/certificates/{cert_id}/reject")
def reject_certificate(cert_id: str, req: StatusChangeRequest | None = None, svc: Services = Depends(get_services)):
    return _change_status(svc, cert_id, CertificateStatus.REJECTED, req, "Certificate rejected.")
