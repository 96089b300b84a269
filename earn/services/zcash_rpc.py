"""Zcash JSON-RPC deposit detector.

Talks to a hosted JSON-RPC gateway (Tatum-style, ``x-api-key`` header). Address
history comes from the insight index (``getaddresstxids``); each candidate
transaction is decoded with ``getrawtransaction`` to find outputs paying the
bridge address.
"""

import itertools
import logging
import time
from datetime import datetime, timezone

import httpx

from earn.errors import CollaboratorError
from earn.services.collaborators import DetectedDeposit

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 30.0
REQUEST_TIMEOUT_SECONDS = 15.0


class ZcashRpcDetector:
    """DepositDetector backed by a Zcash JSON-RPC gateway."""

    def __init__(
        self,
        rpc_url: str,
        api_key: str = "",
        min_confirmations: int = 1,
        client: httpx.AsyncClient | None = None,
        cache_ttl: float = CACHE_TTL_SECONDS,
    ):
        if not rpc_url:
            raise ValueError("zcash_rpc detector requires EARN_ZCASH_RPC_URL")
        self.rpc_url = rpc_url
        self.min_confirmations = min_confirmations
        self.cache_ttl = cache_ttl
        self._client = client or httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT_SECONDS,
            headers={"x-api-key": api_key} if api_key else {},
        )
        self._ids = itertools.count(1)
        self._cache: dict[str, tuple[float, list[DetectedDeposit]]] = {}

    async def _call(self, method: str, params: list | None = None):
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"Zcash RPC {method} failed: {e}") from e

        if body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise CollaboratorError(f"Zcash RPC {method} error: {message or 'RPC error'}")
        return body.get("result")

    async def get_block_height(self) -> int:
        info = await self._call("getblockchaininfo")
        return int(info["blocks"])

    async def _address_outputs(self, address: str) -> list[DetectedDeposit]:
        cached = self._cache.get(address)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]

        txids = await self._call("getaddresstxids", [{"addresses": [address]}]) or []
        outputs: list[DetectedDeposit] = []
        for txid in txids:
            tx = await self._call("getrawtransaction", [txid, 1])
            if not tx:
                continue
            confirmations = int(tx.get("confirmations") or 0)
            block_time = tx.get("time")
            for out in tx.get("vout") or []:
                script = out.get("scriptPubKey") or {}
                addresses = script.get("addresses") or ([script["address"]] if script.get("address") else [])
                if address not in addresses:
                    continue
                outputs.append(DetectedDeposit(
                    tx_ref=tx.get("txid", txid),
                    output_index=int(out.get("n", 0)),
                    amount=float(out.get("value") or 0.0),
                    confirmations=confirmations,
                    block_height=tx.get("height"),
                    timestamp=datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time else None,
                    is_confirmed=confirmations >= self.min_confirmations,
                ))

        self._evict_expired()
        self._cache[address] = (time.monotonic(), outputs)
        return outputs

    def _evict_expired(self):
        now = time.monotonic()
        expired = [a for a, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_ttl]
        for address in expired:
            del self._cache[address]

    async def detect_deposits(self, address: str, min_amount: float) -> list[DetectedDeposit]:
        outputs = await self._address_outputs(address)
        deposits = [d for d in outputs if d.amount >= min_amount]
        if deposits:
            logger.debug(f"Detected {len(deposits)} outputs to {address} >= {min_amount}")
        return deposits

    def clear_cache(self):
        self._cache.clear()

    async def close(self):
        await self._client.aclose()
