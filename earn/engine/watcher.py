"""Deposit watcher.

One sweep, run on an interval by the scheduler:

1. deposit leg: positions in ``pending_deposit``/``bridging_to_near`` that still
   carry deposit watcher state are expired, checked against the source ledger,
   finalized on the bridge and moved into the pool once confirmed
2. withdrawal leg: positions in ``bridging_to_zcash`` are polled on the bridge
3. accrual: ``lending_active`` positions get their earnings recomputed

Positions are handled one at a time; an exception on one is logged against it
and the sweep moves on.
"""

import asyncio
import logging

from sqlmodel import Session, select

from earn.models.position import Position
from earn.services.collaborators import Collaborators, decode_deposit_args
from earn.services.event_log import log_event
from earn.services.orchestrator import Orchestrator
from earn.utils.clock import Clock, as_utc
from earn.utils.constants import (
    BRIDGING_TO_NEAR,
    BRIDGING_TO_ZCASH,
    COMPLETED,
    LENDING_ACTIVE,
    PENDING_DEPOSIT,
    WATCH_DEPOSIT,
    WATCH_WITHDRAWAL,
)

logger = logging.getLogger(__name__)

SWEEP_LOG_ID = "sweep"


def _new_counters() -> dict:
    return {
        "checks": 0,
        "deposits_detected": 0,
        "deposits_finalized": 0,
        "withdrawals_completed": 0,
        "errors": 0,
        "pending_positions": 0,
    }


class DepositWatcher:
    """Periodic reconciliation of positions waiting on an external ledger."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        collaborators: Collaborators | None = None,
        engine=None,
        clock: Clock | None = None,
        config=None,
    ):
        self.orchestrator = orchestrator
        collaborators = collaborators or orchestrator.collaborators
        self.detector = collaborators.detector
        self.bridge = collaborators.bridge
        self.engine = engine if engine is not None else orchestrator.engine
        self.clock = clock or orchestrator.clock
        self.settings = config or orchestrator.settings
        self._lock = asyncio.Lock()
        self.stats = {
            "is_running": False,
            "last_run_at": None,
            "total_checks": 0,
            "deposits_detected": 0,
            "deposits_finalized": 0,
            "withdrawals_completed": 0,
            "errors": 0,
            "pending_positions": 0,
        }

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> dict | None:
        """Run one sweep, skipping if the previous one is still in flight."""
        if self._lock.locked():
            logger.warning("Skipping overlapping watcher sweep")
            log_event(
                self.engine, SWEEP_LOG_ID, "skipped",
                action="sweep_skipped_overlap",
                message="Skipped sweep because previous run is still in progress",
            )
            return None

        async with self._lock:
            self.stats["is_running"] = True
            try:
                counters = await self._sweep_once()
            finally:
                self.stats["is_running"] = False
                self.stats["last_run_at"] = as_utc(self.clock())

        self.stats["total_checks"] += counters["checks"]
        for key in ("deposits_detected", "deposits_finalized", "withdrawals_completed", "errors"):
            self.stats[key] += counters[key]
        self.stats["pending_positions"] = counters["pending_positions"]
        if counters["checks"] or counters["errors"]:
            logger.info(
                f"Sweep done: {counters['checks']} checks, {counters['deposits_detected']} detected, "
                f"{counters['deposits_finalized']} finalized, {counters['withdrawals_completed']} withdrawn, "
                f"{counters['errors']} errors"
            )
        return counters

    def _select(self, statuses: list[str]) -> list[Position]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(Position)
                .where(Position.status.in_(statuses))  # type: ignore[attr-defined]
                .order_by(Position.created_at, Position.id)
            ).all())

    async def _sweep_once(self) -> dict:
        counters = _new_counters()

        deposit_positions = self._select([PENDING_DEPOSIT, BRIDGING_TO_NEAR])
        withdrawal_positions = [
            p for p in self._select([BRIDGING_TO_ZCASH])
            if (p.pending_watcher_state or {}).get("kind") == WATCH_WITHDRAWAL
        ]
        counters["pending_positions"] = len(deposit_positions) + len(withdrawal_positions)

        for position in deposit_positions:
            await self._guarded(position.position_id, self._process_deposit(position, counters), counters)

        for position in withdrawal_positions:
            await self._guarded(position.position_id, self._process_withdrawal(position, counters), counters)

        for position in self._select([LENDING_ACTIVE]):
            await self._guarded(
                position.position_id, self.orchestrator.update_earnings(position.position_id), counters
            )

        return counters

    async def _guarded(self, position_id: str, step, counters: dict) -> str | None:
        try:
            return await step
        except Exception as e:
            counters["errors"] += 1
            logger.error(f"[{position_id}] Watcher step failed: {e}")
            log_event(self.engine, position_id, "error", action="watcher_error", message=str(e))
            return None

    # ------------------------------------------------------------------
    # Deposit leg
    # ------------------------------------------------------------------

    async def _process_deposit(self, position: Position, counters: dict) -> str:
        position_id = position.position_id
        state = position.pending_watcher_state or {}

        if state.get("kind") != WATCH_DEPOSIT:
            # Bridge finalized but the pool deposit never ran (e.g. crash in between)
            leg = position.deposit_bridge_tx or {}
            if position.status == BRIDGING_TO_NEAR and leg.get("status") == "completed":
                position = await self.orchestrator.activate_yield(position_id)
                return position.status
            return "skipped"

        now = as_utc(self.clock())
        created = as_utc(state.get("created_at")) or as_utc(position.created_at)
        age_hours = (now - created).total_seconds() / 3600
        if position.status == PENDING_DEPOSIT and age_hours > self.settings.max_pending_age_hours:
            logger.info(f"[{position_id}] Expired ({age_hours:.1f}h old)")
            await self.orchestrator.cancel_expired(position_id, "Deposit timeout - no ZEC received")
            log_event(
                self.engine, position_id, "skipped", action="timeout",
                message=f"No confirmed deposit after {age_hours:.1f}h",
            )
            return "timeout"

        await self.orchestrator.record_check(position_id)
        counters["checks"] += 1

        min_amount = float(state.get("min_amount") or position.deposited_amount)
        threshold = min_amount * (1 - self.settings.deposit_tolerance_pct / 100)
        deposits = await self.detector.detect_deposits(state["bridge_address"], threshold)
        if not deposits:
            return "no_deposit"

        required = self.settings.required_confirmations
        confirmed = next((d for d in deposits if d.is_confirmed), None)
        if confirmed is None:
            pending = deposits[0]
            progress = f"{pending.confirmations}/{required}"
            if position.status == PENDING_DEPOSIT:
                counters["deposits_detected"] += 1
                await self.orchestrator.mark_deposit_observed(
                    position_id, pending.tx_ref,
                    note=f"ZEC deposit detected, awaiting confirmations ({progress})",
                )
                log_event(
                    self.engine, position_id, "success", action="deposit_detected",
                    message=f"{pending.amount} ZEC in {pending.tx_ref} ({progress} confirmations)",
                )
            else:
                logger.info(f"[{position_id}] Waiting on confirmations ({progress})")
            return "pending_confirmations"

        logger.info(
            f"[{position_id}] Deposit confirmed: tx={confirmed.tx_ref} vout={confirmed.output_index} "
            f"amount={confirmed.amount}"
        )
        if position.status == PENDING_DEPOSIT:
            counters["deposits_detected"] += 1

        encoded_args = state.get("encoded_args")
        args = decode_deposit_args(encoded_args)
        result = await self.bridge.finalize_deposit(
            position.owner_address, confirmed.tx_ref, confirmed.output_index, encoded_args
        )
        if not result.success:
            counters["errors"] += 1
            logger.error(f"[{position_id}] Finalization failed: {result.error}")
            log_event(
                self.engine, position_id, "error", action="finalize_failed",
                message=result.error or "bridge finalization failed",
                details={"tx_ref": confirmed.tx_ref, "output_index": confirmed.output_index},
            )
            return "finalize_failed"

        if position.status == PENDING_DEPOSIT:
            await self.orchestrator.mark_deposit_observed(
                position_id, confirmed.tx_ref,
                bridged_amount_hint=result.minted_amount,
                note="ZEC deposit confirmed, bridging to NEAR",
            )
        await self.orchestrator.record_bridge_finalized(
            position_id,
            source_tx_ref=confirmed.tx_ref,
            destination_tx_ref=result.destination_tx_ref,
            minted_amount=result.minted_amount,
            observed_amount=confirmed.amount,
        )
        counters["deposits_finalized"] += 1
        log_event(
            self.engine, position_id, "success", action="deposit_finalized",
            message=f"Minted {result.minted_amount} in {result.destination_tx_ref}",
            details={"tx_ref": confirmed.tx_ref, "recipient": (args.get("deposit_msg") or {}).get("recipient_id")},
        )

        position = await self.orchestrator.activate_yield(position_id)
        return position.status

    # ------------------------------------------------------------------
    # Withdrawal leg
    # ------------------------------------------------------------------

    async def _process_withdrawal(self, position: Position, counters: dict) -> str:
        counters["checks"] += 1
        position = await self.orchestrator.process_withdrawal(position.position_id)
        if position.status == COMPLETED:
            counters["withdrawals_completed"] += 1
            return "completed"
        if (position.pending_watcher_state or {}).get("last_error"):
            counters["errors"] += 1
            return "withdrawal_failed"
        return "pending_withdrawal"

    # ------------------------------------------------------------------
    # Manual checks
    # ------------------------------------------------------------------

    async def check_position(self, position_id: str) -> dict:
        """Run the watcher's logic for one position immediately.

        Waits for an in-flight sweep to finish and reads the position afresh
        afterwards, so a deposit is never finalized by both.
        """
        async with self._lock:
            position = self.orchestrator.get_position(position_id)
            counters = _new_counters()
            state = position.pending_watcher_state or {}

            if position.status in (PENDING_DEPOSIT, BRIDGING_TO_NEAR):
                outcome = await self._process_deposit(position, counters)
            elif position.status == BRIDGING_TO_ZCASH and state.get("kind") == WATCH_WITHDRAWAL:
                outcome = await self._process_withdrawal(position, counters)
            elif position.status == LENDING_ACTIVE:
                await self.orchestrator.update_earnings(position_id)
                outcome = "earnings_updated"
            else:
                outcome = "skipped"

            position = self.orchestrator.get_position(position_id)
        return {"position_id": position_id, "outcome": outcome, "status": position.status}

    def get_stats(self) -> dict:
        return dict(self.stats)
