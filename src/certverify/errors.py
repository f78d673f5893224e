from __future__ import annotations


class CertVerifyError(Exception):
    """Base error carrying an HTTP-equivalent status and a caller-safe message."""

    status_code = 500
    default_message = "Request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(CertVerifyError):
    status_code = 404
    default_message = "Certificate not found."


class InvalidInput(CertVerifyError):
    status_code = 400
    default_message = "Invalid request."


class InvalidTransition(CertVerifyError):
    status_code = 409
    default_message = "Certificate status cannot be changed."


class StorageUnavailable(CertVerifyError):
    status_code = 503
    default_message = "Certificate file could not be retrieved."


class LedgerUnavailable(CertVerifyError):
    """Raised by ledger clients; AnchorVerifier turns it into a status value."""

    status_code = 503
    default_message = "Blockchain verification unavailable."


class DecodeExhausted(CertVerifyError):
    status_code = 404
    default_message = (
        "No QR code found in the image. Please ensure the image contains a clear, readable QR code."
    )

    def __init__(self, message: str | None = None, suggestions: list[str] | None = None):
        super().__init__(message)
        self.suggestions = list(suggestions or [])


class InternalError(CertVerifyError):
    status_code = 500
    default_message = "Internal server error."
