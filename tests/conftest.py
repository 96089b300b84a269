"""Shared fixtures: in-memory database, fixed clock and simulated collaborators."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

import earn.models  # noqa: F401  registers tables
from earn.config import Settings
from earn.engine.watcher import DepositWatcher
from earn.models.position import Position
from earn.services.collaborators import Collaborators
from earn.services.orchestrator import Orchestrator
from earn.services.simulated import SimulatedBridge, SimulatedLedger, SimulatedYieldPool

OWNER = "t1" + "a" * 33
DESTINATION = "zs1" + "b" * 75
T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        network="testnet",
        min_confirmations=1,
        bridge_fee_percent=0.5,
        deposit_tolerance_pct=1.0,
        max_pending_age_hours=72.0,
        fallback_apy=8.5,
        min_deposit=0.001,
        max_deposit=1000.0,
        withdrawal_fee_percent=0.1,
        withdrawal_min_fee=0.0001,
    )


@pytest.fixture
def ledger():
    return SimulatedLedger(min_confirmations=1)


@pytest.fixture
def collaborators(config, ledger):
    return Collaborators(
        detector=ledger,
        bridge=SimulatedBridge(config=config, ledger=ledger),
        pool=SimulatedYieldPool(config=config, apy=10.0),
        names={"detector": "simulated", "bridge": "simulated", "pool": "simulated"},
    )


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def orchestrator(collaborators, engine, clock, config, notifier):
    return Orchestrator(collaborators, engine=engine, clock=clock, config=config, notifier=notifier)


@pytest.fixture
def watcher(orchestrator):
    return DepositWatcher(orchestrator)


def update_row(engine, position_id: str, **fields) -> Position:
    """Write fields straight to a position row, bypassing the orchestrator."""
    with Session(engine) as session:
        position = session.exec(select(Position).where(Position.position_id == position_id)).first()
        for key, value in fields.items():
            setattr(position, key, value)
        session.add(position)
        session.commit()
        session.refresh(position)
        return position


async def make_active(orchestrator, amount: float = 1.0, minted: float = 1.0) -> Position:
    """Drive a fresh position to ``lending_active`` through the orchestrator."""
    position = await orchestrator.create_position(OWNER, amount)
    await orchestrator.mark_deposit_observed(position.position_id, "zec-tx-1")
    await orchestrator.record_bridge_finalized(
        position.position_id, "zec-tx-1", "near-tx-1", minted_amount=minted, observed_amount=amount
    )
    return await orchestrator.activate_yield(position.position_id)
