from __future__ import annotations

import asyncio
import logging
import re

import httpx

from ..api.models import AnchorStatus
from ..errors import LedgerUnavailable

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


class EthRpcLedgerClient:
    """Read-only view call against the anchoring contract over JSON-RPC ``eth_call``.

    The contract exposes ``verify(bytes32) -> bool``; ``selector`` is its
    4-byte function selector as hex.
    """

    def __init__(self, rpc_url: str, contract_address: str, selector: str, http_client: httpx.AsyncClient):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.selector = selector.lower().removeprefix("0x")
        self.http = http_client
        self._next_id = 0

    def call_data(self, digest_hex: str) -> str:
        digest = digest_hex.lower().removeprefix("0x")
        if not _HEX_DIGEST.match(digest):
            raise ValueError(f"digest must be 32 bytes of hex, got {digest_hex!r}")
        return f"0x{self.selector}{digest}"

    async def is_anchored(self, digest_hex: str) -> bool:
        self._next_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": "eth_call",
            "params": [{"to": self.contract_address, "data": self.call_data(digest_hex)}, "latest"],
        }
        r = await self.http.post(self.rpc_url, json=body)
        r.raise_for_status()
        obj = r.json()
        if obj.get("error"):
            # reverts surface as JSON-RPC errors
            raise LedgerUnavailable(f"eth_call failed: {obj['error'].get('message', obj['error'])}")
        result = obj.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise LedgerUnavailable(f"unexpected eth_call result {result!r}")
        word = result[2:]
        return bool(word) and int(word, 16) != 0


class UnconfiguredLedgerClient:
    async def is_anchored(self, digest_hex: str) -> bool:
        raise LedgerUnavailable("ledger is not configured")


class AnchorVerifier:
    def __init__(self, client, timeout_seconds: float = 10.0):
        self.client = client
        self.timeout = timeout_seconds

    async def check(self, digest_hex: str) -> AnchorStatus:
        """Tri-state anchor lookup. Failures are reported as UNAVAILABLE, never raised."""
        try:
            anchored = await asyncio.wait_for(self.client.is_anchored(digest_hex), self.timeout)
        except asyncio.TimeoutError:
            logging.warning("Ledger check timed out after %.1fs for digest %s", self.timeout, digest_hex)
            return AnchorStatus.UNAVAILABLE
        except LedgerUnavailable as e:
            logging.warning("Ledger unavailable for digest %s: %s", digest_hex, e.message)
            return AnchorStatus.UNAVAILABLE
        except Exception:
            logging.exception("Ledger check failed for digest %s", digest_hex)
            return AnchorStatus.UNAVAILABLE
        return AnchorStatus.ANCHORED if anchored else AnchorStatus.NOT_ANCHORED
