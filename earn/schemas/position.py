"""Pydantic schemas for the earn API.

Amounts and addresses are only trimmed here; range and format checks live in
the orchestrator so every caller gets the same errors.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from earn.services.collaborators import DepositQuote


def _trim(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    return text


class DepositQuoteRequest(BaseModel):
    owner_address: str = Field(max_length=256)
    amount: float

    @field_validator("owner_address")
    @classmethod
    def _trim_owner(cls, value: str) -> str:
        return _trim(value)


class DepositQuoteSchema(BaseModel):
    bridge_address: str = Field(min_length=1)
    expected_amount: float
    eta_minutes: int = Field(ge=0)
    fee_percent: float = Field(ge=0)
    intent_id: str
    encoded_args: str | None = None
    min_amount: float | None = None
    account_ref: str | None = None
    source: str = "simulated"
    is_simulated: bool = True

    @classmethod
    def from_quote(cls, quote: DepositQuote) -> "DepositQuoteSchema":
        return cls(**quote.__dict__)

    def to_quote(self) -> DepositQuote:
        return DepositQuote(**self.model_dump())


class PositionCreate(BaseModel):
    owner_address: str = Field(max_length=256)
    amount: float
    quote: DepositQuoteSchema | None = None
    pool_id: str | None = Field(default=None, max_length=120)
    extra: dict[str, Any] | None = None

    @field_validator("owner_address")
    @classmethod
    def _trim_owner(cls, value: str) -> str:
        return _trim(value)

    @field_validator("pool_id")
    @classmethod
    def _trim_pool(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class WithdrawRequest(BaseModel):
    owner_address: str
    destination_address: str
    amount: float | None = None  # None = full current value

    @field_validator("owner_address", "destination_address")
    @classmethod
    def _trim_addresses(cls, value: str) -> str:
        return _trim(value)


class DepositObservedRequest(BaseModel):
    source_tx_ref: str = Field(min_length=1)
    bridged_amount_hint: float | None = Field(default=None, ge=0)


class CompletedRequest(BaseModel):
    destination_tx_ref: str = Field(min_length=1)
    actual_amount: float | None = Field(default=None, ge=0)


class ProtocolInfoRead(BaseModel):
    protocol_name: str
    pool_id: str
    current_apy: float
    total_value_locked: float
    min_deposit: float
    max_deposit: float
    withdrawal_fee_percent: float
    is_active: bool = True


class PoolRead(BaseModel):
    pool_id: str
    token_symbols: list[str] = []
    tvl: float
    apy: float
    fee: float = 0.0


class PositionSummary(BaseModel):
    position_id: str
    status: str
    deposited_amount: float
    current_value: float
    accrued_interest: float
    current_apy: float
    deposited_at: datetime | None = None
    last_updated_at: datetime | None = None


class EarningsPoint(BaseModel):
    timestamp: datetime
    balance: float
    earnings: float


class OwnerStats(BaseModel):
    total_deposited: float
    total_current_value: float
    total_earnings: float
    active_positions: int
    completed_positions: int


class WithdrawalFee(BaseModel):
    amount: float
    fee: float
    fee_percent: float
    net_amount: float
