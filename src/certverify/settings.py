from pathlib import Path
import secrets

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    certverify_data_dir: Path = Path("./data")
    # Object storage (local bucket layout, HMAC-signed read handles)
    storage_dir: Path = Path("./data/objects")
    storage_bucket: str = "certificates"
    storage_base_url: str = "http://127.0.0.1:8000"
    storage_signing_key: str = ""
    # Signed URL lifetimes; verification handles are deliberately short lived
    download_url_ttl_seconds: int = 3600
    verify_url_ttl_seconds: int = 60
    fetch_timeout_seconds: float = 30.0
    # Ledger (JSON-RPC eth_call against the anchoring contract)
    ledger_rpc_url: str | None = None
    ledger_contract_address: str | None = None
    ledger_verify_selector: str | None = None  # 4-byte hex selector of verify(bytes32) -> bool
    ledger_timeout_seconds: float = 10.0
    # QR scanning
    qr_max_attempts: int = 3
    qr_max_upload_bytes: int = 10 * 1024 * 1024
    # Bulk archive
    bulk_chunk_size: int = 64 * 1024
    log_level: str = "INFO"

    def ledger_configured(self) -> bool:
        return bool(self.ledger_rpc_url and self.ledger_contract_address and self.ledger_verify_selector)

    def model_post_init(self, __context):  # type: ignore[override]
        # Handles minted with a process-local key stop validating after restart.
        if not self.storage_signing_key:
            self.storage_signing_key = secrets.token_hex(32)

settings = Settings()
settings.certverify_data_dir.mkdir(parents=True, exist_ok=True)
