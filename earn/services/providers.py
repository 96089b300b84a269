"""Collaborator selection.

Bridges are kept as an ordered list of capability-tagged strategies built once
from ``settings.bridge_providers``. Each call goes to the first strategy that
declares the capability; a strategy that raises ``CollaboratorError`` hands the
call to the next one.
"""

import logging
from typing import Callable

from earn.config import Settings, settings as default_settings
from earn.errors import CollaboratorError
from earn.services.collaborators import (
    Collaborators,
    DepositQuote,
    FinalizeDepositResult,
    WithdrawalFinalizeResult,
    WithdrawalInitResult,
)
from earn.services.simulated import SimulatedBridge, SimulatedLedger, SimulatedYieldPool

logger = logging.getLogger(__name__)

CAP_QUOTE = "quote"
CAP_FINALIZE_DEPOSIT = "finalize_deposit"
CAP_WITHDRAW = "withdraw"


class BridgeChain:
    """BridgeFinalizer that fans out over an ordered list of strategies."""

    def __init__(self, strategies: list):
        if not strategies:
            raise ValueError("BridgeChain needs at least one bridge strategy")
        self.strategies = list(strategies)
        # pending withdrawal ref -> strategy that issued it
        self._withdrawal_owners: dict[str, object] = {}

    @property
    def names(self) -> list[str]:
        return [getattr(s, "name", type(s).__name__) for s in self.strategies]

    def supporting(self, capability: str) -> list:
        return [s for s in self.strategies if capability in getattr(s, "capabilities", ())]

    async def _first(self, capability: str, call: Callable):
        candidates = self.supporting(capability)
        if not candidates:
            raise CollaboratorError(f"No bridge provider supports '{capability}'")

        errors = []
        for strategy in candidates:
            name = getattr(strategy, "name", type(strategy).__name__)
            try:
                return strategy, await call(strategy)
            except CollaboratorError as e:
                logger.warning(f"Bridge provider {name} failed {capability}: {e.message}")
                errors.append(f"{name}: {e.message}")
        raise CollaboratorError(f"All bridge providers failed {capability} ({'; '.join(errors)})")

    async def get_deposit_quote(self, owner_address: str, amount: float) -> DepositQuote:
        _, quote = await self._first(
            CAP_QUOTE, lambda s: s.get_deposit_quote(owner_address, amount)
        )
        return quote

    async def finalize_deposit(
        self, owner_address: str, tx_ref: str, output_index: int, encoded_args: str | None
    ) -> FinalizeDepositResult:
        _, result = await self._first(
            CAP_FINALIZE_DEPOSIT,
            lambda s: s.finalize_deposit(owner_address, tx_ref, output_index, encoded_args),
        )
        return result

    async def initiate_withdrawal(
        self, owner_address: str, destination_address: str, amount: float
    ) -> WithdrawalInitResult:
        strategy, result = await self._first(
            CAP_WITHDRAW,
            lambda s: s.initiate_withdrawal(owner_address, destination_address, amount),
        )
        if result.success and result.pending_id:
            self._withdrawal_owners[result.pending_id] = strategy
        return result

    async def finalize_withdrawal(self, owner_address: str, pending_ref: str) -> WithdrawalFinalizeResult:
        owner = self._withdrawal_owners.get(pending_ref)
        if owner is not None:
            result = await owner.finalize_withdrawal(owner_address, pending_ref)
        else:
            # Issued before a restart; ask the providers in priority order
            _, result = await self._first(
                CAP_WITHDRAW, lambda s: s.finalize_withdrawal(owner_address, pending_ref)
            )
        if not result.is_pending:
            self._withdrawal_owners.pop(pending_ref, None)
        return result

    async def close(self):
        for strategy in self.strategies:
            closer = getattr(strategy, "close", None)
            if closer is not None:
                await closer()


def _simulated_bridge(config: Settings, ledger: SimulatedLedger | None):
    return SimulatedBridge(config=config, ledger=ledger)


def _swapkit_bridge(config: Settings, ledger: SimulatedLedger | None):
    from earn.services.swapkit import SwapKitBridge

    return SwapKitBridge(config=config)


BRIDGE_FACTORIES: dict[str, Callable] = {
    "swapkit": _swapkit_bridge,
    "simulated": _simulated_bridge,
}


def build_bridge_chain(config: Settings, ledger: SimulatedLedger | None = None) -> BridgeChain:
    strategies = []
    for name in config.bridge_providers:
        factory = BRIDGE_FACTORIES.get(name)
        if factory is None:
            raise ValueError(f"Unknown bridge provider: {name}")
        strategies.append(factory(config, ledger))
    return BridgeChain(strategies)


def build_collaborators(config: Settings | None = None) -> Collaborators:
    """Wire detector, bridge chain and yield pool from configuration."""
    config = config or default_settings

    ledger = None
    if config.detector_provider == "simulated":
        ledger = SimulatedLedger(min_confirmations=config.required_confirmations)
        detector = ledger
    elif config.detector_provider == "zcash_rpc":
        from earn.services.zcash_rpc import ZcashRpcDetector

        detector = ZcashRpcDetector(
            rpc_url=config.zcash_rpc_url,
            api_key=config.zcash_api_key,
            min_confirmations=config.required_confirmations,
        )
    else:
        raise ValueError(f"Unknown detector provider: {config.detector_provider}")

    bridge = build_bridge_chain(config, ledger)

    if config.pool_provider == "simulated":
        pool = SimulatedYieldPool(config=config)
    elif config.pool_provider == "ref_indexer":
        from earn.services.ref_indexer import RefIndexerPool

        pool = RefIndexerPool(config=config)
    else:
        raise ValueError(f"Unknown pool provider: {config.pool_provider}")

    names = {
        "detector": config.detector_provider,
        "bridge": ",".join(bridge.names),
        "pool": config.pool_provider,
    }
    logger.info(
        f"Collaborators: detector={names['detector']} bridge=[{names['bridge']}] "
        f"pool={names['pool']} network={config.network}"
    )
    return Collaborators(detector=detector, bridge=bridge, pool=pool, names=names)
