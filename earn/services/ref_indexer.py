"""Yield pool whose APY and TVL are read from the RHEA (Ref Finance) indexer.

Only the market data is live; pool deposits and withdrawals are bookkept in
memory, the same way the simulated pool does it.
"""

import logging
import time

import httpx

from earn.config import Settings, settings as default_settings
from earn.errors import CollaboratorError
from earn.services.collaborators import PoolDepositResult, PoolSummary, PoolWithdrawResult, ProtocolInfo
from earn.utils.ids import make_ref

logger = logging.getLogger(__name__)

MAINNET_INDEXER_URL = "https://indexer.ref.finance"
TESTNET_INDEXER_URL = "https://testnet-indexer.ref-finance.com"

CACHE_TTL_SECONDS = 60.0
REQUEST_TIMEOUT_SECONDS = 10.0
MAX_POOL_APY = 500.0
POOLS_SCANNED = 50
MAX_TOP_POOLS = 50


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def estimate_pool_apy(pool: dict) -> float:
    """Trading-fee APY of one whitelisted pool, in percent.

    Uses 24h volume when the indexer reports it, otherwise assumes a daily
    volume/TVL ratio by TVL tier.
    """
    tvl = _to_float(pool.get("tvl"))
    fee_rate = _to_float(pool.get("total_fee")) / 10000  # basis points
    volume = _to_float(pool.get("volume_24h"))
    if volume and tvl:
        apy = volume * fee_rate / tvl * 365 * 100
    elif tvl > 0:
        ratio = 0.15 if tvl > 1_000_000 else 0.10 if tvl > 100_000 else 0.05
        apy = fee_rate * ratio * 365 * 100
    else:
        apy = 0.0
    return round(min(apy, MAX_POOL_APY), 2)


class RefIndexerPool:
    """YieldPool backed by indexer market data."""

    def __init__(
        self,
        config: Settings | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        cache_ttl: float = CACHE_TTL_SECONDS,
    ):
        self.settings = config or default_settings
        if base_url is None:
            base_url = self.settings.ref_indexer_url
            if self.settings.network != "mainnet" and base_url == MAINNET_INDEXER_URL:
                base_url = TESTNET_INDEXER_URL
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        self._cache: dict[str, tuple[float, object]] = {}
        self.balances: dict[str, float] = {}
        logger.info(f"RefIndexerPool using {self.base_url}")

    async def _get(self, path: str):
        cached = self._cache.get(path)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]
        resp = await self._client.get(f"{self.base_url}{path}")
        resp.raise_for_status()
        data = resp.json()
        self._cache[path] = (time.monotonic(), data)
        return data

    async def get_whitelisted_pools(self) -> list[dict]:
        data = await self._get("/whitelisted-active-pools")
        return data if isinstance(data, list) else []

    async def get_average_apy(self, top_n: int = 10) -> float:
        """Mean APY of the ``top_n`` best pools, or the configured fallback."""
        fallback = self.settings.fallback_apy
        try:
            pools = await self.get_whitelisted_pools()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch pools for APY: {e}")
            return fallback

        apys = sorted((estimate_pool_apy(p) for p in pools[:POOLS_SCANNED]), reverse=True)[:top_n]
        if not apys:
            logger.warning("No pools available for APY calculation, using fallback")
            return fallback
        average = sum(apys) / len(apys)
        return round(average, 2) if average > 0 else fallback

    async def get_total_tvl(self) -> float:
        try:
            pools = await self.get_whitelisted_pools()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch pools for TVL: {e}")
            return 0.0
        return sum(_to_float(p.get("tvl")) for p in pools)

    async def get_top_pools(self, limit: int = 10) -> list[PoolSummary]:
        """Whitelisted pools ranked by estimated APY, at most ``MAX_TOP_POOLS``."""
        limit = max(1, min(limit, MAX_TOP_POOLS))
        try:
            pools = await self.get_whitelisted_pools()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"Failed to fetch pools from indexer: {e}") from e

        ranked = sorted(
            (
                PoolSummary(
                    pool_id=str(p.get("id")),
                    token_symbols=list(p.get("token_symbols") or []),
                    tvl=_to_float(p.get("tvl")),
                    apy=estimate_pool_apy(p),
                    fee=_to_float(p.get("total_fee")),
                )
                for p in pools[:POOLS_SCANNED]
            ),
            key=lambda s: s.apy,
            reverse=True,
        )
        return ranked[:limit]

    async def get_protocol_info(self) -> ProtocolInfo:
        return ProtocolInfo(
            protocol_name=self.settings.protocol_name,
            pool_id=self.settings.default_pool_id,
            current_apy=await self.get_average_apy(),
            total_value_locked=await self.get_total_tvl(),
            min_deposit=self.settings.min_deposit,
            max_deposit=self.settings.max_deposit,
            withdrawal_fee_percent=self.settings.withdrawal_fee_percent,
        )

    async def deposit(self, account_ref: str, amount: float, pool_id: str) -> PoolDepositResult:
        apy = await self.get_average_apy()
        self.balances[account_ref] = self.balances.get(account_ref, 0.0) + amount
        logger.info(f"Pool deposit: {amount} into {pool_id} for {account_ref} at {apy}%")
        return PoolDepositResult(success=True, current_apy=apy, tx_ref=make_ref("RHEA-LP"))

    async def withdraw(self, account_ref: str, amount: float) -> PoolWithdrawResult:
        self.balances[account_ref] = max(0.0, self.balances.get(account_ref, 0.0) - amount)
        logger.info(f"Pool withdraw: {amount} for {account_ref}")
        return PoolWithdrawResult(success=True, withdrawn_amount=amount, tx_ref=make_ref("RHEA-WD"))

    def clear_cache(self):
        self._cache.clear()

    async def close(self):
        await self._client.aclose()
