"""Tests for the deposit watcher sweep: detection, finalization, timeouts, withdrawals, accrual."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session, select

from earn.errors import CollaboratorError, PositionNotFound
from earn.models.watcher_log import WatcherLog
from earn.services.collaborators import FinalizeDepositResult
from earn.utils.clock import as_utc
from earn.utils.constants import (
    BRIDGING_TO_NEAR,
    CANCELLED,
    COMPLETED,
    LENDING_ACTIVE,
    PENDING_DEPOSIT,
)
from tests.conftest import DESTINATION, OWNER, T0, make_active


def _logs(engine, action: str) -> list[WatcherLog]:
    with Session(engine) as session:
        return list(session.exec(select(WatcherLog).where(WatcherLog.action == action)).all())


# ---------------------------------------------------------------------------
# 1. Deposit leg
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_short_deposit_within_tolerance_reaches_lending(orchestrator, watcher, collaborators, ledger):
    position = await orchestrator.create_position(OWNER, 1.0)
    ledger.record_payment(position.bridge_deposit_address, 0.99, confirmations=1, tx_ref="zec-tx-99")
    collaborators.bridge.finalize_deposit = AsyncMock(
        return_value=FinalizeDepositResult(success=True, destination_tx_ref="near-tx-1", minted_amount=0.985)
    )

    counters = await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.status == LENDING_ACTIVE
    assert position.bridged_amount == 0.985
    assert position.current_value == 0.985
    assert position.lending_position["principal_amount"] == 0.985
    assert position.deposit_bridge_tx["source_tx_ref"] == "zec-tx-99"
    assert position.deposit_bridge_tx["destination_tx_ref"] == "near-tx-1"
    assert position.deposit_bridge_tx["source_amount"] == 0.99
    assert position.pending_watcher_state is None
    assert [e["status"] for e in position.status_history] == [PENDING_DEPOSIT, BRIDGING_TO_NEAR, LENDING_ACTIVE]
    assert counters["checks"] == 1
    assert counters["deposits_detected"] == 1
    assert counters["deposits_finalized"] == 1
    assert counters["errors"] == 0

    args = collaborators.bridge.finalize_deposit.await_args.args
    assert args[0] == OWNER
    assert args[1] == "zec-tx-99"
    assert args[3] is not None  # encoded deposit args from the quote


@pytest.mark.asyncio
async def test_deposit_below_tolerance_is_ignored(orchestrator, watcher, ledger):
    position = await orchestrator.create_position(OWNER, 1.0)
    ledger.record_payment(position.bridge_deposit_address, 0.98, confirmations=1)

    counters = await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.status == PENDING_DEPOSIT
    assert counters["deposits_detected"] == 0


@pytest.mark.asyncio
async def test_sweep_is_idempotent_once_finalized(orchestrator, watcher, collaborators, ledger):
    position = await orchestrator.create_position(OWNER, 1.0)
    ledger.record_payment(position.bridge_deposit_address, 1.0, confirmations=1)
    collaborators.bridge.finalize_deposit = AsyncMock(
        return_value=FinalizeDepositResult(success=True, destination_tx_ref="near-tx-1", minted_amount=0.995)
    )

    await watcher.sweep()
    await watcher.sweep()

    assert collaborators.bridge.finalize_deposit.await_count == 1
    assert sum(collaborators.pool.balances.values()) == pytest.approx(0.995)
    position = orchestrator.get_position(position.position_id)
    assert [e["status"] for e in position.status_history].count(LENDING_ACTIVE) == 1


@pytest.mark.asyncio
async def test_unconfirmed_then_confirmed(orchestrator, watcher, ledger):
    position = await orchestrator.create_position(OWNER, 1.0)
    tx_ref = ledger.record_payment(position.bridge_deposit_address, 1.0, confirmations=0)

    counters = await watcher.sweep()

    observed = orchestrator.get_position(position.position_id)
    assert counters["deposits_detected"] == 1
    assert observed.status == BRIDGING_TO_NEAR
    assert "awaiting confirmations (0/1)" in observed.status_history[-1]["note"]
    assert observed.pending_watcher_state["kind"] == "deposit"

    # Still unconfirmed: no second bridging entry
    await watcher.sweep()
    assert len(orchestrator.get_position(position.position_id).status_history) == 2

    ledger.add_confirmations(tx_ref)
    await watcher.sweep()

    active = orchestrator.get_position(position.position_id)
    assert active.status == LENDING_ACTIVE
    assert active.bridged_amount == pytest.approx(0.995)
    assert [e["status"] for e in active.status_history] == [PENDING_DEPOSIT, BRIDGING_TO_NEAR, LENDING_ACTIVE]
    assert len(_logs(orchestrator.engine, "deposit_detected")) == 1
    assert len(_logs(orchestrator.engine, "deposit_finalized")) == 1


@pytest.mark.asyncio
async def test_pending_deposit_times_out(orchestrator, watcher, ledger, clock):
    position = await orchestrator.create_position(OWNER, 1.0)
    ledger.detect_deposits = AsyncMock(return_value=[])
    clock.advance(hours=72, seconds=1)

    await watcher.sweep()
    await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.status == CANCELLED
    assert len(position.status_history) == 2
    assert position.status_history[-1]["note"] == "Deposit timeout - no ZEC received"
    ledger.detect_deposits.assert_not_called()
    assert len(_logs(orchestrator.engine, "timeout")) == 1


@pytest.mark.asyncio
async def test_not_yet_expired_is_checked(orchestrator, watcher, clock):
    position = await orchestrator.create_position(OWNER, 1.0)
    clock.advance(hours=71)

    counters = await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.status == PENDING_DEPOSIT
    assert position.pending_watcher_state["check_count"] == 1
    assert as_utc(position.pending_watcher_state["last_checked_at"]) == as_utc(clock())
    assert counters["checks"] == 1


@pytest.mark.asyncio
async def test_finalize_failure_leaves_position_pending(orchestrator, watcher, collaborators, ledger):
    position = await orchestrator.create_position(OWNER, 1.0)
    ledger.record_payment(position.bridge_deposit_address, 1.0, confirmations=1)
    collaborators.bridge.finalize_deposit = AsyncMock(
        return_value=FinalizeDepositResult(success=False, error="proof rejected")
    )

    counters = await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.status == PENDING_DEPOSIT
    assert counters["errors"] == 1
    logs = _logs(orchestrator.engine, "finalize_failed")
    assert len(logs) == 1
    assert logs[0].message == "proof rejected"


@pytest.mark.asyncio
async def test_detector_error_does_not_stop_sweep(orchestrator, watcher, ledger):
    first = await orchestrator.create_position(OWNER, 1.0)
    second = await orchestrator.create_position(OWNER, 2.0)
    ledger.detect_deposits = AsyncMock(side_effect=[CollaboratorError("rpc down"), []])

    counters = await watcher.sweep()

    assert counters["errors"] == 1
    assert counters["checks"] == 2
    assert ledger.detect_deposits.await_count == 2
    assert orchestrator.get_position(second.position_id).pending_watcher_state["check_count"] == 1
    logs = _logs(orchestrator.engine, "watcher_error")
    assert [log.position_id for log in logs] == [first.position_id]


@pytest.mark.asyncio
async def test_finalized_but_not_lent_is_resumed(orchestrator, watcher):
    position = await orchestrator.create_position(OWNER, 1.0)
    await orchestrator.mark_deposit_observed(position.position_id, "zec-tx-1")
    await orchestrator.record_bridge_finalized(position.position_id, "zec-tx-1", "near-tx-1", minted_amount=0.99)

    await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.status == LENDING_ACTIVE
    assert position.bridged_amount == 0.99


# ---------------------------------------------------------------------------
# 2. Withdrawal and accrual legs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_withdrawal_leg_completes(orchestrator, watcher):
    position = await make_active(orchestrator)
    await orchestrator.initiate_withdrawal(position.position_id, OWNER, DESTINATION)

    counters = await watcher.sweep()

    assert counters["withdrawals_completed"] == 1
    assert counters["pending_positions"] == 1
    assert orchestrator.get_position(position.position_id).status == COMPLETED


@pytest.mark.asyncio
async def test_accrual_leg_updates_earnings(orchestrator, watcher, clock):
    position = await make_active(orchestrator, minted=1.0)
    clock.advance(days=10)

    await watcher.sweep()

    position = orchestrator.get_position(position.position_id)
    assert position.accrued_interest == pytest.approx(1.0 * (10.0 / 365 / 100) * 10)


# ---------------------------------------------------------------------------
# 3. Sweep control and manual checks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_overlapping_sweep_is_skipped(watcher, engine):
    async with watcher._lock:
        result = await watcher.sweep()

    assert result is None
    logs = _logs(engine, "sweep_skipped_overlap")
    assert len(logs) == 1
    assert logs[0].position_id == "sweep"


@pytest.mark.asyncio
async def test_stats_accumulate(orchestrator, watcher):
    await orchestrator.create_position(OWNER, 1.0)

    await watcher.sweep()
    await watcher.sweep()

    stats = watcher.get_stats()
    assert stats["total_checks"] == 2
    assert stats["pending_positions"] == 1
    assert stats["is_running"] is False
    assert stats["last_run_at"] == T0


@pytest.mark.asyncio
async def test_check_position(orchestrator, watcher):
    pending = await orchestrator.create_position(OWNER, 1.0)
    active = await make_active(orchestrator)

    assert await watcher.check_position(pending.position_id) == {
        "position_id": pending.position_id,
        "outcome": "no_deposit",
        "status": PENDING_DEPOSIT,
    }
    result = await watcher.check_position(active.position_id)
    assert result["outcome"] == "earnings_updated"
    with pytest.raises(PositionNotFound):
        await watcher.check_position("EARN-MISSING-000000")


@pytest.mark.asyncio
async def test_check_position_during_sweep_finalizes_once(orchestrator, watcher, collaborators, ledger):
    position = await orchestrator.create_position(OWNER, 1.0)
    ledger.record_payment(position.bridge_deposit_address, 1.0, confirmations=1)

    async def slow_finalize(*args):
        await asyncio.sleep(0.05)
        return FinalizeDepositResult(success=True, destination_tx_ref="near-tx-1", minted_amount=0.995)

    collaborators.bridge.finalize_deposit = AsyncMock(side_effect=slow_finalize)

    counters, result = await asyncio.gather(watcher.sweep(), watcher.check_position(position.position_id))

    assert collaborators.bridge.finalize_deposit.await_count == 1
    assert counters["deposits_finalized"] == 1
    assert result["outcome"] == "earnings_updated"
    assert result["status"] == LENDING_ACTIVE
    assert sum(collaborators.pool.balances.values()) == pytest.approx(0.995)
