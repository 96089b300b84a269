"""Collaborator contracts consumed by the orchestrator and the watcher.

The source-ledger detector, the bridge and the yield pool are external systems.
The core only talks to them through the protocols below; concrete providers
live in ``simulated``, ``zcash_rpc``, ``ref_indexer`` and ``providers``.
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

from earn.errors import CollaboratorError

__all__ = [
    "CollaboratorError",
    "Collaborators",
    "DepositDetector",
    "BridgeFinalizer",
    "YieldPool",
    "DetectedDeposit",
    "DepositQuote",
    "FinalizeDepositResult",
    "WithdrawalInitResult",
    "WithdrawalFinalizeResult",
    "ProtocolInfo",
    "PoolDepositResult",
    "PoolWithdrawResult",
    "encode_deposit_args",
    "decode_deposit_args",
]


@dataclass
class DetectedDeposit:
    tx_ref: str
    output_index: int
    amount: float
    confirmations: int
    block_height: int | None = None
    timestamp: datetime | None = None
    is_confirmed: bool = False


@dataclass
class DepositQuote:
    bridge_address: str
    expected_amount: float
    eta_minutes: int
    fee_percent: float
    intent_id: str
    encoded_args: str | None = None  # base64 JSON handed back to finalize_deposit
    min_amount: float | None = None
    account_ref: str | None = None  # destination-ledger account credited by the bridge
    source: str = "simulated"
    is_simulated: bool = True


@dataclass
class FinalizeDepositResult:
    success: bool
    destination_tx_ref: str | None = None
    minted_amount: float | None = None
    error: str | None = None


@dataclass
class WithdrawalInitResult:
    success: bool
    pending_id: str | None = None
    destination_tx_ref: str | None = None
    eta_minutes: int | None = None
    error: str | None = None


@dataclass
class WithdrawalFinalizeResult:
    """Outcome of polling a reverse-bridge leg.

    ``success=False`` with no ``error`` means the leg is still in flight.
    """

    success: bool
    source_tx_ref: str | None = None
    error: str | None = None

    @property
    def is_pending(self) -> bool:
        return not self.success and not self.error


@dataclass
class ProtocolInfo:
    protocol_name: str
    pool_id: str
    current_apy: float
    total_value_locked: float
    min_deposit: float
    max_deposit: float
    withdrawal_fee_percent: float
    is_active: bool = True


@dataclass
class PoolSummary:
    pool_id: str
    token_symbols: list[str]
    tvl: float
    apy: float
    fee: float = 0.0


@dataclass
class PoolDepositResult:
    success: bool
    current_apy: float = 0.0
    tx_ref: str | None = None
    error: str | None = None


@dataclass
class PoolWithdrawResult:
    success: bool
    withdrawn_amount: float = 0.0
    tx_ref: str | None = None
    error: str | None = None


@runtime_checkable
class DepositDetector(Protocol):
    async def detect_deposits(self, address: str, min_amount: float) -> list[DetectedDeposit]: ...


@runtime_checkable
class BridgeFinalizer(Protocol):
    async def get_deposit_quote(self, owner_address: str, amount: float) -> DepositQuote: ...

    async def finalize_deposit(
        self, owner_address: str, tx_ref: str, output_index: int, encoded_args: str | None
    ) -> FinalizeDepositResult: ...

    async def initiate_withdrawal(
        self, owner_address: str, destination_address: str, amount: float
    ) -> WithdrawalInitResult: ...

    async def finalize_withdrawal(self, owner_address: str, pending_ref: str) -> WithdrawalFinalizeResult: ...


@runtime_checkable
class YieldPool(Protocol):
    async def get_protocol_info(self) -> ProtocolInfo: ...

    async def get_top_pools(self, limit: int = 10) -> list[PoolSummary]: ...

    async def deposit(self, account_ref: str, amount: float, pool_id: str) -> PoolDepositResult: ...

    async def withdraw(self, account_ref: str, amount: float) -> PoolWithdrawResult: ...


@dataclass
class Collaborators:
    """The three leaf components wired together at startup."""

    detector: DepositDetector
    bridge: BridgeFinalizer
    pool: YieldPool
    names: dict[str, str] = field(default_factory=dict)

    async def close(self):
        for component in (self.detector, self.bridge, self.pool):
            closer = getattr(component, "close", None)
            if closer is not None:
                await closer()


def encode_deposit_args(args: dict) -> str:
    """Pack bridge finalization arguments as base64 JSON for storage."""
    return base64.b64encode(json.dumps(args, sort_keys=True).encode("utf-8")).decode("ascii")


def decode_deposit_args(encoded: str | None) -> dict:
    if not encoded:
        return {}
    try:
        return json.loads(base64.b64decode(encoded.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise CollaboratorError(f"Malformed deposit args: {e}") from e
