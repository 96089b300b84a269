"""Position model: the durable record of one deposit-to-withdrawal cycle."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column


class Position(SQLModel, table=True):
    __tablename__ = "earn_position"

    id: int | None = Field(default=None, primary_key=True)
    position_id: str = Field(index=True, unique=True)
    owner_address: str = Field(index=True)  # source-ledger (Zcash) address
    status: str = Field(index=True)

    # Amounts
    deposited_amount: float  # ZEC the user was asked to send
    bridged_amount: float = 0.0  # amount minted on the destination ledger
    current_value: float = 0.0  # principal + accrued interest
    accrued_interest: float = 0.0
    deposit_apy: float = 0.0
    current_apy: float = 0.0

    # Identifiers fixed once the deposit flow is prepared
    bridge_deposit_address: str | None = None
    bridge_intent_id: str | None = None
    pool_id: str
    protocol_name: str
    withdraw_to_address: str | None = None

    # Structured sub-records
    status_history: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    deposit_bridge_tx: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    withdrawal_bridge_tx: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    lending_position: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    pending_watcher_state: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    extra: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    # Lifecycle timestamps, each set once in status order
    deposit_initiated_at: datetime | None = None
    lending_started_at: datetime | None = None
    withdrawal_initiated_at: datetime | None = None
    completed_at: datetime | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
