"""In-process simulated providers for development and testnet runs.

These stand in for the real ledgers the same way the exchange client runs in
mock mode when no SDK is available: every call succeeds, logs what it would
have done, and returns deterministic ``SIM-`` references.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone

from earn.config import Settings, settings as default_settings
from earn.services.collaborators import (
    DepositQuote,
    DetectedDeposit,
    FinalizeDepositResult,
    PoolDepositResult,
    PoolSummary,
    PoolWithdrawResult,
    ProtocolInfo,
    WithdrawalFinalizeResult,
    WithdrawalInitResult,
    encode_deposit_args,
)
from earn.utils.ids import make_ref

logger = logging.getLogger(__name__)


@dataclass
class _Payment:
    tx_ref: str
    address: str
    amount: float
    output_index: int = 0
    confirmations: int = 0
    block_height: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SimulatedLedger:
    """Source ledger kept in memory; payments are injected by hand or by tests."""

    def __init__(self, min_confirmations: int = 1):
        self.min_confirmations = min_confirmations
        self._payments: dict[str, _Payment] = {}
        self._height = 1_000_000

    def record_payment(
        self,
        address: str,
        amount: float,
        confirmations: int = 0,
        tx_ref: str | None = None,
        output_index: int = 0,
    ) -> str:
        tx_ref = tx_ref or secrets.token_hex(32)
        self._payments[tx_ref] = _Payment(
            tx_ref=tx_ref,
            address=address,
            amount=amount,
            output_index=output_index,
            confirmations=confirmations,
            block_height=self._height if confirmations > 0 else None,
        )
        logger.info(f"SIM payment {tx_ref[:12]}… {amount} ZEC -> {address} ({confirmations} conf)")
        return tx_ref

    def add_confirmations(self, tx_ref: str, count: int = 1):
        payment = self._payments[tx_ref]
        if payment.block_height is None:
            payment.block_height = self._height
        payment.confirmations += count

    def amount_of(self, tx_ref: str) -> float | None:
        payment = self._payments.get(tx_ref)
        return payment.amount if payment else None

    async def detect_deposits(self, address: str, min_amount: float) -> list[DetectedDeposit]:
        return [
            DetectedDeposit(
                tx_ref=p.tx_ref,
                output_index=p.output_index,
                amount=p.amount,
                confirmations=p.confirmations,
                block_height=p.block_height,
                timestamp=p.timestamp,
                is_confirmed=p.confirmations >= self.min_confirmations,
            )
            for p in self._payments.values()
            if p.address == address and p.amount >= min_amount
        ]


def simulated_account_ref(owner_address: str, network: str = "testnet") -> str:
    """Destination-ledger account derived from the owner's source address."""
    digest = hashlib.sha256(owner_address.encode("utf-8")).hexdigest()[:16]
    suffix = "near" if network == "mainnet" else "testnet"
    return f"earn-{digest}.{suffix}"


class SimulatedBridge:
    """Bridge that hands out placeholder deposit addresses and always finalizes."""

    name = "simulated"
    capabilities = frozenset({"quote", "finalize_deposit", "withdraw"})

    def __init__(
        self,
        config: Settings | None = None,
        ledger: SimulatedLedger | None = None,
        withdrawal_polls: int = 0,
    ):
        self.settings = config or default_settings
        self.ledger = ledger
        self.withdrawal_polls = withdrawal_polls  # polls before a withdrawal lands
        self._withdrawal_polls_seen: dict[str, int] = {}

    def _fee(self, amount: float) -> float:
        return amount * (self.settings.bridge_fee_percent / 100)

    async def get_deposit_quote(self, owner_address: str, amount: float) -> DepositQuote:
        account_ref = simulated_account_ref(owner_address, self.settings.network)
        bridge_address = "t1" + secrets.token_hex(17)[:33]
        logger.warning(f"MOCK bridge address {bridge_address} for {owner_address} (not real!)")
        return DepositQuote(
            bridge_address=bridge_address,
            expected_amount=amount - self._fee(amount),
            eta_minutes=self.settings.bridge_eta_minutes,
            fee_percent=self.settings.bridge_fee_percent,
            intent_id=make_ref("INTENT", 8),
            encoded_args=encode_deposit_args({"deposit_msg": {"recipient_id": account_ref}}),
            min_amount=amount,
            account_ref=account_ref,
            source="simulated",
            is_simulated=True,
        )

    async def finalize_deposit(
        self, owner_address: str, tx_ref: str, output_index: int, encoded_args: str | None
    ) -> FinalizeDepositResult:
        observed = self.ledger.amount_of(tx_ref) if self.ledger else None
        minted = observed - self._fee(observed) if observed else None
        logger.info(f"MOCK finalize deposit: tx={tx_ref[:12]}… vout={output_index} minted={minted}")
        return FinalizeDepositResult(
            success=True,
            destination_tx_ref=make_ref("SIM-NEAR"),
            minted_amount=minted,
        )

    async def initiate_withdrawal(
        self, owner_address: str, destination_address: str, amount: float
    ) -> WithdrawalInitResult:
        pending_id = make_ref("SIM-WD")
        logger.info(f"MOCK withdrawal {pending_id}: {amount} -> {destination_address}")
        return WithdrawalInitResult(
            success=True,
            pending_id=pending_id,
            destination_tx_ref=make_ref("SIM-NEAR"),
            eta_minutes=15,
        )

    async def finalize_withdrawal(self, owner_address: str, pending_ref: str) -> WithdrawalFinalizeResult:
        seen = self._withdrawal_polls_seen.get(pending_ref, 0)
        if seen < self.withdrawal_polls:
            self._withdrawal_polls_seen[pending_ref] = seen + 1
            return WithdrawalFinalizeResult(success=False)
        self._withdrawal_polls_seen.pop(pending_ref, None)
        source_tx_ref = make_ref("SIM-ZEC")
        logger.info(f"MOCK withdrawal {pending_ref} finalized: {source_tx_ref}")
        return WithdrawalFinalizeResult(success=True, source_tx_ref=source_tx_ref)


class SimulatedYieldPool:
    """Yield pool with a fixed APY that tracks balances per account in memory."""

    def __init__(self, config: Settings | None = None, apy: float | None = None):
        self.settings = config or default_settings
        self.apy = apy if apy is not None else self.settings.fallback_apy
        self.balances: dict[str, float] = {}

    async def get_protocol_info(self) -> ProtocolInfo:
        return ProtocolInfo(
            protocol_name=self.settings.protocol_name,
            pool_id=self.settings.default_pool_id,
            current_apy=self.apy,
            total_value_locked=sum(self.balances.values()),
            min_deposit=self.settings.min_deposit,
            max_deposit=self.settings.max_deposit,
            withdrawal_fee_percent=self.settings.withdrawal_fee_percent,
        )

    async def get_top_pools(self, limit: int = 10) -> list[PoolSummary]:
        summary = PoolSummary(
            pool_id=self.settings.default_pool_id,
            token_symbols=["wNEAR", "ZEC"],
            tvl=sum(self.balances.values()),
            apy=self.apy,
        )
        return [summary] if limit > 0 else []

    async def deposit(self, account_ref: str, amount: float, pool_id: str) -> PoolDepositResult:
        self.balances[account_ref] = self.balances.get(account_ref, 0.0) + amount
        logger.info(f"MOCK pool deposit: {amount} into {pool_id} for {account_ref}")
        return PoolDepositResult(success=True, current_apy=self.apy, tx_ref=make_ref("SIM-RHEA-LP"))

    async def withdraw(self, account_ref: str, amount: float) -> PoolWithdrawResult:
        # Accrued interest is tracked on the position, not here, so allow overdraw
        self.balances[account_ref] = max(0.0, self.balances.get(account_ref, 0.0) - amount)
        logger.info(f"MOCK pool withdraw: {amount} for {account_ref}")
        return PoolWithdrawResult(success=True, withdrawn_amount=amount, tx_ref=make_ref("SIM-RHEA-WD"))
