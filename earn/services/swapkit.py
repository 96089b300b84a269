"""SwapKit quote strategy.

Asks the SwapKit aggregator for a ZEC -> NEAR route through the NEAR Intents
provider and hands back the route's deposit address as the bridge address.
Only quoting is supported; finalization and withdrawals stay with the other
strategies in the chain.
"""

import logging
import math

import httpx

from earn.config import Settings, settings as default_settings
from earn.errors import CollaboratorError
from earn.services.collaborators import DepositQuote, encode_deposit_args
from earn.utils.ids import make_ref

logger = logging.getLogger(__name__)

SELL_ASSET = "ZEC.ZEC"
BUY_ASSET = "NEAR.NEAR"
NEAR_PROVIDER = "NEAR"
RECOMMENDED_TAG = "RECOMMENDED"
DEFAULT_ROUTE_SECONDS = 600
REQUEST_TIMEOUT_SECONDS = 30.0


def select_route(routes: list[dict]) -> dict | None:
    """First NEAR route, preferring one SwapKit tags as recommended."""
    near_routes = [r for r in routes if NEAR_PROVIDER in (r.get("providers") or [])]
    if not near_routes:
        return None
    for route in near_routes:
        if RECOMMENDED_TAG in ((route.get("meta") or {}).get("tags") or []):
            return route
    return near_routes[0]


class SwapKitBridge:
    """Quote-only bridge strategy backed by the SwapKit API."""

    name = "swapkit"
    capabilities = frozenset({"quote"})

    def __init__(
        self,
        config: Settings | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = config or default_settings
        api_key = api_key if api_key is not None else self.settings.swapkit_api_key
        if not api_key:
            raise ValueError("swapkit bridge requires EARN_SWAPKIT_API_KEY")
        self.base_url = (base_url or self.settings.swapkit_api_url).rstrip("/")
        self.destination_account = self.settings.swapkit_destination_account
        self._client = client or httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT_SECONDS,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
        )

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            resp = await self._client.post(f"{self.base_url}{path}", json=payload)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"SwapKit {path} failed: {e}") from e

    async def get_deposit_quote(self, owner_address: str, amount: float) -> DepositQuote:
        body = await self._post("/quote", {
            "sellAsset": SELL_ASSET,
            "buyAsset": BUY_ASSET,
            "sellAmount": str(amount),
            "providers": [NEAR_PROVIDER],
            "sourceAddress": owner_address,
            "destinationAddress": self.destination_account,
            "slippage": self.settings.swapkit_slippage_percent,
            "includeTx": False,
        })

        route = select_route(body.get("routes") or [])
        if route is None:
            raise CollaboratorError("SwapKit returned no NEAR route for ZEC")
        deposit_address = route.get("targetAddress") or route.get("inboundAddress")
        if not deposit_address:
            raise CollaboratorError("SwapKit route has no deposit address")

        try:
            expected = float(route.get("expectedBuyAmount") or 0)
        except (TypeError, ValueError):
            expected = 0.0
        total_seconds = (route.get("estimatedTime") or {}).get("total") or DEFAULT_ROUTE_SECONDS
        logger.info(
            f"SwapKit quote for {amount} ZEC from {owner_address}: deposit to {deposit_address}, "
            f"expect {expected} (impact {(route.get('meta') or {}).get('priceImpact')})"
        )
        return DepositQuote(
            bridge_address=deposit_address,
            expected_amount=expected,
            eta_minutes=math.ceil(total_seconds / 60),
            fee_percent=self.settings.bridge_fee_percent,
            intent_id=make_ref("INTENT", 8),
            encoded_args=encode_deposit_args({
                "deposit_msg": {"recipient_id": self.destination_account},
                "memo": route.get("memo"),
            }),
            min_amount=amount,
            account_ref=self.destination_account,
            source="swapkit_api",
            is_simulated=False,
        )

    async def close(self):
        await self._client.aclose()
