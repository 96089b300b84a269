"""Earn orchestrator.

Creates positions and drives them through the lifecycle:

    pending_deposit -> bridging_to_near -> lending_active -> bridging_to_zcash -> completed

with ``cancelled`` (deposit timeout) and ``failed`` (pool rejected the bridged
funds) as the other terminal states. Every mutating operation re-reads the
position under a row lock and checks the expected predecessor status, so
replaying an event against a position that already moved on is a no-op.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable

from sqlmodel import Session, select

from earn.config import Settings, settings as default_settings
from earn.errors import (
    CollaboratorError,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    NotActive,
    OutOfRange,
    PositionNotFound,
)
from earn.models.position import Position
from earn.services.collaborators import Collaborators, DepositQuote, PoolSummary, ProtocolInfo
from earn.services.event_log import log_event
from earn.services.notifier import notify
from earn.services.state_machine import append_history, transition
from earn.utils.addresses import is_valid_source_address
from earn.utils.clock import Clock, as_utc, utcnow
from earn.utils.constants import (
    BRIDGING_TO_NEAR,
    BRIDGING_TO_ZCASH,
    CANCELLED,
    COMPLETED,
    DAY_SECONDS,
    DIRECTION_TO_DESTINATION,
    DIRECTION_TO_SOURCE,
    FAILED,
    LENDING_ACTIVE,
    PENDING_DEPOSIT,
    TERMINAL_STATUSES,
    WATCH_DEPOSIT,
    WATCH_WITHDRAWAL,
)
from earn.utils.ids import make_ref

logger = logging.getLogger(__name__)

# Float slack when comparing a requested withdrawal against current value
BALANCE_EPSILON = 1e-9

MAX_TOP_POOLS = 50


def _bridge_tx(
    direction: str,
    status: str,
    source_address: str | None,
    destination_address: str | None,
    source_amount: float | None,
    intent_id: str | None,
    now,
    source_tx_ref: str | None = None,
    destination_amount: float | None = None,
) -> dict:
    return {
        "bridge_tx_id": make_ref("BRIDGE"),
        "direction": direction,
        "status": status,
        "source_address": source_address,
        "destination_address": destination_address,
        "source_amount": source_amount,
        "destination_amount": destination_amount,
        "intent_id": intent_id,
        "source_tx_ref": source_tx_ref,
        "destination_tx_ref": None,
        "created_at": now.isoformat(),
        "completed_at": None,
    }


class Orchestrator:
    """Synchronous entry points for the earn lifecycle."""

    def __init__(
        self,
        collaborators: Collaborators,
        engine=None,
        clock: Clock = utcnow,
        config: Settings | None = None,
        notifier: Callable[[str], None] = notify,
    ):
        if engine is None:
            from earn.database import engine
        self.collaborators = collaborators
        self.engine = engine
        self.clock = clock
        self.settings = config or default_settings
        self.notifier = notifier
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def bridge(self):
        return self.collaborators.bridge

    @property
    def pool(self):
        return self.collaborators.pool

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _lock_for(self, position_id: str) -> asyncio.Lock:
        return self._locks.setdefault(position_id, asyncio.Lock())

    @asynccontextmanager
    async def _locked(self, position_id: str, owner_address: str | None = None):
        """Yield ``(session, position)`` with the row locked for update.

        The in-process lock serializes coroutines of this instance; the row
        lock covers other processes on databases that support it. The
        in-process lock is dropped once the position is missing or terminal.
        """
        lock = self._lock_for(position_id)
        release = False
        try:
            async with lock:
                with Session(self.engine) as session:
                    position = session.exec(
                        select(Position)
                        .where(Position.position_id == position_id)
                        .with_for_update()
                    ).first()
                    release = position is None or position.status in TERMINAL_STATUSES
                    if position is None or (
                        owner_address is not None and position.owner_address != owner_address
                    ):
                        raise PositionNotFound(f"Position {position_id} not found")
                    yield session, position
                    release = position.status in TERMINAL_STATUSES
        finally:
            if release and self._locks.get(position_id) is lock:
                del self._locks[position_id]

    @staticmethod
    def _save(session: Session, position: Position) -> Position:
        session.add(position)
        session.commit()
        session.refresh(position)
        return position

    def _log(self, position_id: str, status: str, action: str, message: str, details: dict | None = None):
        log_event(self.engine, position_id, status, action=action, message=message,
                  details=details, timestamp=self.clock())

    def _alert(self, message: str):
        try:
            self.notifier(message)
        except Exception as e:
            logger.warning(f"Operator notification failed: {e}")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_address(address: str, what: str = "Zcash address"):
        if not is_valid_source_address(address):
            raise InvalidAddress(f"Invalid {what}")

    @staticmethod
    def _check_positive(amount) -> float:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidAmount("Amount must be a number")
        if amount != amount or amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        return float(amount)

    async def _check_range(self, amount: float) -> ProtocolInfo:
        info = await self.get_protocol_info()
        if amount < info.min_deposit:
            raise OutOfRange(f"Minimum deposit is {info.min_deposit} ZEC")
        if amount > info.max_deposit:
            raise OutOfRange(f"Maximum deposit is {info.max_deposit} ZEC")
        return info

    # ------------------------------------------------------------------
    # Protocol info and quotes
    # ------------------------------------------------------------------

    async def get_protocol_info(self) -> ProtocolInfo:
        return await self.pool.get_protocol_info()

    async def get_top_pools(self, limit: int = 10) -> list[PoolSummary]:
        """Pools a position can be opened in, best APY first."""
        if limit < 1:
            raise InvalidAmount("Limit must be at least 1")
        return await self.pool.get_top_pools(min(limit, MAX_TOP_POOLS))

    async def get_deposit_quote(self, owner_address: str, amount: float) -> DepositQuote:
        """Validate the request and ask the bridge for a deposit address."""
        self._check_address(owner_address)
        amount = self._check_positive(amount)
        await self._check_range(amount)
        return await self.bridge.get_deposit_quote(owner_address, amount)

    # ------------------------------------------------------------------
    # Deposit flow
    # ------------------------------------------------------------------

    async def create_position(
        self,
        owner_address: str,
        amount: float,
        quote: DepositQuote | None = None,
        pool_id: str | None = None,
        extra: dict | None = None,
    ) -> Position:
        """Persist a new position in ``pending_deposit``.

        A caller-supplied quote is stored verbatim so the watcher looks for
        exactly the address the user was shown; a fresh quote is only fetched
        when none is given.
        """
        self._check_address(owner_address, "Zcash wallet address")
        amount = self._check_positive(amount)
        info = await self._check_range(amount)

        if quote is None:
            quote = await self.bridge.get_deposit_quote(owner_address, amount)
        if not quote.bridge_address:
            raise CollaboratorError("Bridge quote has no deposit address")

        merged_extra = dict(extra or {})
        if pool_id:
            merged_extra["selected_pool_id"] = pool_id

        now = self.clock()
        position = Position(
            position_id=make_ref("EARN"),
            owner_address=owner_address,
            status=PENDING_DEPOSIT,
            deposited_amount=amount,
            deposit_apy=info.current_apy,
            current_apy=info.current_apy,
            bridge_deposit_address=quote.bridge_address,
            bridge_intent_id=quote.intent_id,
            pool_id=pool_id or info.pool_id,
            protocol_name=info.protocol_name,
            pending_watcher_state={
                "kind": WATCH_DEPOSIT,
                "bridge_address": quote.bridge_address,
                "encoded_args": quote.encoded_args,
                "min_amount": quote.min_amount if quote.min_amount else amount,
                "expected_amount": quote.expected_amount,
                "account_ref": quote.account_ref,
                "pending_ref": None,
                "provider": quote.source,
                "created_at": now.isoformat(),
                "last_checked_at": None,
                "check_count": 0,
            },
            extra=merged_extra or None,
            deposit_initiated_at=now,
            created_at=now,
            updated_at=now,
        )
        append_history(position, PENDING_DEPOSIT, now, note="Position created, awaiting ZEC deposit")

        with Session(self.engine) as session:
            self._save(session, position)

        logger.info(
            f"[{position.position_id}] Created for {owner_address}: {amount} ZEC -> "
            f"{quote.bridge_address} ({'simulated' if quote.is_simulated else quote.source})"
        )
        return position

    async def mark_deposit_observed(
        self,
        position_id: str,
        source_tx_ref: str,
        bridged_amount_hint: float | None = None,
        note: str | None = None,
    ) -> Position:
        """Record that a payment reached the bridge address."""
        async with self._locked(position_id) as (session, position):
            if position.status != PENDING_DEPOSIT:
                logger.debug(f"[{position_id}] Deposit already observed ({position.status})")
                return position

            now = self.clock()
            state = position.pending_watcher_state or {}
            position.deposit_bridge_tx = _bridge_tx(
                direction=DIRECTION_TO_DESTINATION,
                status="processing",
                source_address=position.owner_address,
                destination_address=state.get("account_ref"),
                source_amount=position.deposited_amount,
                intent_id=position.bridge_intent_id,
                now=now,
                source_tx_ref=source_tx_ref,
                destination_amount=bridged_amount_hint,
            )
            transition(
                position, BRIDGING_TO_NEAR, now,
                note=note or "ZEC received, bridging to NEAR",
                tx_ref=source_tx_ref,
            )
            self._save(session, position)

        logger.info(f"[{position_id}] Deposit observed: {source_tx_ref}")
        return position

    async def record_bridge_finalized(
        self,
        position_id: str,
        source_tx_ref: str,
        destination_tx_ref: str | None,
        minted_amount: float | None = None,
        observed_amount: float | None = None,
    ) -> Position:
        """Close the deposit bridge leg and drop the deposit watcher state."""
        async with self._locked(position_id) as (session, position):
            leg = dict(position.deposit_bridge_tx or {})
            if position.status != BRIDGING_TO_NEAR or leg.get("status") == "completed":
                logger.debug(f"[{position_id}] Bridge leg already finalized ({position.status})")
                return position

            now = self.clock()
            if not leg:
                state = position.pending_watcher_state or {}
                leg = _bridge_tx(
                    direction=DIRECTION_TO_DESTINATION,
                    status="processing",
                    source_address=position.owner_address,
                    destination_address=state.get("account_ref"),
                    source_amount=position.deposited_amount,
                    intent_id=position.bridge_intent_id,
                    now=now,
                )
            leg.update({
                "status": "completed",
                "source_tx_ref": leg.get("source_tx_ref") or source_tx_ref,
                "destination_tx_ref": destination_tx_ref,
                "completed_at": now.isoformat(),
            })
            if observed_amount:
                leg["source_amount"] = observed_amount
            if minted_amount and minted_amount > 0:
                leg["destination_amount"] = minted_amount
                position.bridged_amount = minted_amount

            if position.pending_watcher_state and not leg.get("destination_address"):
                leg["destination_address"] = position.pending_watcher_state.get("account_ref")
            position.deposit_bridge_tx = leg
            position.pending_watcher_state = None
            position.updated_at = now
            self._save(session, position)

        logger.info(f"[{position_id}] Bridge finalized: {destination_tx_ref} minted={minted_amount}")
        return position

    def _lending_amount(self, position: Position) -> float:
        """Minted amount when the bridge reported one, else a fee-net estimate."""
        minted = (position.deposit_bridge_tx or {}).get("destination_amount")
        if minted and minted > 0:
            return float(minted)
        if position.bridged_amount > 0:
            return position.bridged_amount
        return position.deposited_amount * (1 - self.settings.bridge_fee_percent / 100)

    @staticmethod
    def _account_ref(position: Position) -> str:
        state = position.pending_watcher_state or {}
        leg = position.deposit_bridge_tx or {}
        lending = position.lending_position or {}
        return (
            lending.get("account_ref")
            or state.get("account_ref")
            or leg.get("destination_address")
            or position.owner_address
        )

    async def activate_yield(self, position_id: str) -> Position:
        """Deposit the bridged funds into the pool. Failure is terminal."""
        async with self._locked(position_id) as (session, position):
            if position.status != BRIDGING_TO_NEAR:
                logger.debug(f"[{position_id}] Not awaiting yield activation ({position.status})")
                return position

            amount = self._lending_amount(position)
            account_ref = self._account_ref(position)
            try:
                result = await self.pool.deposit(account_ref, amount, position.pool_id)
                error = None if result.success else (result.error or "pool rejected deposit")
            except CollaboratorError as e:
                result = None
                error = e.message

            now = self.clock()
            if error:
                position.pending_watcher_state = None
                transition(
                    position, FAILED, now,
                    note=f"Failed to deposit to {position.protocol_name}: {error}",
                )
                self._save(session, position)
                logger.error(f"[{position_id}] Yield activation failed: {error}")
                self._log(position_id, "error", "activation_failed", error, {"amount": amount})
                self._alert(
                    f"Earn position {position_id} FAILED: bridged {amount} but pool deposit "
                    f"was rejected ({error}). Manual recovery required."
                )
                return position

            apy = result.current_apy or position.current_apy
            position.bridged_amount = amount
            position.current_value = amount
            position.accrued_interest = 0.0
            position.current_apy = apy
            position.lending_started_at = now
            position.lending_position = {
                "account_ref": account_ref,
                "protocol_name": position.protocol_name,
                "pool_id": position.pool_id,
                "principal_amount": amount,
                "current_amount": amount,
                "accrued_interest": 0.0,
                "apy_snapshot": apy,
                "current_apy": apy,
                "deposited_at": now.isoformat(),
                "last_updated_at": now.isoformat(),
            }
            leg = dict(position.deposit_bridge_tx or {})
            if leg:
                leg["status"] = "completed"
                leg["destination_amount"] = amount
                leg["completed_at"] = leg.get("completed_at") or now.isoformat()
                position.deposit_bridge_tx = leg
            position.pending_watcher_state = None
            transition(
                position, LENDING_ACTIVE, now,
                note=f"Deposited to {position.protocol_name} at {apy}% APY",
                tx_ref=result.tx_ref,
            )
            self._save(session, position)

        logger.info(f"[{position_id}] Lending activated: {amount} at {apy}% APY")
        return position

    async def update_earnings(self, position_id: str) -> Position:
        """Recompute simple linear accrual from ``lending_started_at`` at the current APY."""
        try:
            apy = (await self.pool.get_protocol_info()).current_apy
        except CollaboratorError as e:
            logger.warning(f"[{position_id}] Pool unavailable, keeping stored APY: {e.message}")
            apy = None

        async with self._locked(position_id) as (session, position):
            started = as_utc(position.lending_started_at)
            if position.status != LENDING_ACTIVE or started is None or position.bridged_amount <= 0:
                return position

            now = self.clock()
            if apy is None:
                apy = position.current_apy
            lending = dict(position.lending_position or {})
            principal = lending.get("principal_amount") or position.bridged_amount
            days = max(0.0, (as_utc(now) - started).total_seconds() / DAY_SECONDS)
            earnings = max(0.0, principal * (apy / 365 / 100) * days)

            position.current_value = principal + earnings
            position.accrued_interest = earnings
            position.current_apy = apy
            if lending:
                lending.update({
                    "current_amount": position.current_value,
                    "accrued_interest": earnings,
                    "current_apy": apy,
                    "last_updated_at": now.isoformat(),
                })
                position.lending_position = lending
            position.updated_at = now
            self._save(session, position)

        return position

    async def cancel_expired(self, position_id: str, note: str = "Deposit timeout - no ZEC received") -> Position:
        async with self._locked(position_id) as (session, position):
            if position.status != PENDING_DEPOSIT:
                return position
            now = self.clock()
            position.pending_watcher_state = None
            transition(position, CANCELLED, now, note=note)
            self._save(session, position)

        logger.info(f"[{position_id}] Cancelled: {note}")
        self._alert(f"Earn position {position_id} cancelled: {note}")
        return position

    async def record_check(self, position_id: str, error: str | None = None) -> Position:
        """Bump ``last_checked_at``/``check_count`` on the watcher state, if any."""
        async with self._locked(position_id) as (session, position):
            if not position.pending_watcher_state:
                return position
            state = dict(position.pending_watcher_state)
            state["last_checked_at"] = self.clock().isoformat()
            state["check_count"] = int(state.get("check_count") or 0) + 1
            if error is not None:
                state["last_error"] = error
            position.pending_watcher_state = state
            self._save(session, position)
        return position

    # ------------------------------------------------------------------
    # Withdrawal flow
    # ------------------------------------------------------------------

    async def initiate_withdrawal(
        self,
        position_id: str,
        owner_address: str,
        destination_address: str,
        amount: float | None = None,
    ) -> Position:
        """Pull funds out of the pool and start the reverse bridge.

        Nothing is written unless both collaborator calls succeed.
        """
        async with self._locked(position_id, owner_address) as (session, position):
            if position.status != LENDING_ACTIVE:
                raise NotActive("Position is not active for withdrawal")
            self._check_address(destination_address, "withdrawal address")

            if amount is None:
                amount = position.current_value
            amount = self._check_positive(amount)
            if amount > position.current_value + BALANCE_EPSILON:
                raise InsufficientBalance("Withdrawal amount exceeds available balance")

            account_ref = self._account_ref(position)
            pool_result = await self.pool.withdraw(account_ref, amount)
            if not pool_result.success:
                raise CollaboratorError(
                    f"Failed to withdraw from {position.protocol_name}: {pool_result.error or 'rejected'}"
                )

            withdrawn = pool_result.withdrawn_amount or amount
            init = await self.bridge.initiate_withdrawal(owner_address, destination_address, withdrawn)
            if not init.success:
                logger.error(
                    f"[{position_id}] Pool released {withdrawn} but bridge refused: {init.error}"
                )
                self._alert(
                    f"Earn position {position_id}: pool withdrawal of {withdrawn} succeeded "
                    f"but the bridge refused it ({init.error}). Check the pool account {account_ref}."
                )
                raise CollaboratorError(f"Bridge withdrawal failed: {init.error or 'rejected'}")

            now = self.clock()
            leg = _bridge_tx(
                direction=DIRECTION_TO_SOURCE,
                status="processing",
                source_address=account_ref,
                destination_address=destination_address,
                source_amount=withdrawn,
                intent_id=init.pending_id,
                now=now,
                source_tx_ref=init.destination_tx_ref,
            )
            position.withdrawal_bridge_tx = leg
            position.pending_watcher_state = {
                "kind": WATCH_WITHDRAWAL,
                "bridge_address": None,
                "encoded_args": None,
                "min_amount": None,
                "expected_amount": withdrawn,
                "account_ref": account_ref,
                "pending_ref": init.pending_id,
                "eta_minutes": init.eta_minutes,
                "created_at": now.isoformat(),
                "last_checked_at": None,
                "check_count": 0,
            }
            position.withdraw_to_address = destination_address
            position.withdrawal_initiated_at = now
            transition(
                position, BRIDGING_TO_ZCASH, now,
                note=f"Withdrawing {withdrawn} ZEC to shielded wallet",
                tx_ref=init.destination_tx_ref or pool_result.tx_ref,
            )
            self._save(session, position)

        logger.info(f"[{position_id}] Withdrawal initiated: {withdrawn} -> {destination_address}")
        return position

    def _complete(self, position: Position, destination_tx_ref: str | None, actual_amount: float | None):
        now = self.clock()
        leg = dict(position.withdrawal_bridge_tx or {})
        received = actual_amount or leg.get("source_amount") or position.current_value
        if leg:
            leg.update({
                "status": "completed",
                "destination_tx_ref": destination_tx_ref,
                "destination_amount": received,
                "completed_at": now.isoformat(),
            })
            position.withdrawal_bridge_tx = leg
        position.completed_at = now
        position.pending_watcher_state = None
        transition(
            position, COMPLETED, now,
            note=f"Funds returned to shielded wallet: {received} ZEC",
            tx_ref=destination_tx_ref,
        )

    async def process_withdrawal(self, position_id: str) -> Position:
        """Poll the reverse bridge once.

        A hard failure leaves the position in ``bridging_to_zcash`` for manual
        intervention; the error is logged and operators are alerted once.
        """
        position = self.get_position(position_id)
        state = position.pending_watcher_state or {}
        if position.status != BRIDGING_TO_ZCASH or state.get("kind") != WATCH_WITHDRAWAL:
            return position
        pending_ref = state.get("pending_ref")
        if not pending_ref:
            logger.warning(f"[{position_id}] Withdrawal has no pending reference")
            return position

        result = await self.bridge.finalize_withdrawal(position.owner_address, pending_ref)

        alert = None
        async with self._locked(position_id) as (session, position):
            if position.status != BRIDGING_TO_ZCASH:
                return position

            if result.success:
                self._complete(position, result.source_tx_ref, None)
            else:
                state = dict(position.pending_watcher_state or {})
                state["last_checked_at"] = self.clock().isoformat()
                state["check_count"] = int(state.get("check_count") or 0) + 1
                if result.error:
                    if state.get("last_error") != result.error:
                        alert = result.error
                    state["last_error"] = result.error
                position.pending_watcher_state = state
            self._save(session, position)

        if result.success:
            logger.info(f"[{position_id}] Withdrawal completed: {result.source_tx_ref}")
        elif result.error:
            logger.error(f"[{position_id}] Withdrawal {pending_ref} failed: {result.error}")
            self._log(position_id, "error", "withdrawal_failed", result.error, {"pending_ref": pending_ref})
            if alert:
                self._alert(
                    f"Earn position {position_id}: withdrawal {pending_ref} failed ({alert}). "
                    f"Position left in {BRIDGING_TO_ZCASH} for manual review."
                )
        return position

    async def mark_completed(
        self,
        position_id: str,
        destination_tx_ref: str,
        actual_amount: float | None = None,
    ) -> Position:
        async with self._locked(position_id) as (session, position):
            if position.status != BRIDGING_TO_ZCASH:
                logger.debug(f"[{position_id}] Not awaiting completion ({position.status})")
                return position
            self._complete(position, destination_tx_ref, actual_amount)
            self._save(session, position)

        logger.info(f"[{position_id}] Completed: {destination_tx_ref}")
        return position

    def estimate_withdrawal_fee(self, amount: float) -> dict:
        amount = self._check_positive(amount)
        fee = max(amount * self.settings.withdrawal_fee_percent / 100, self.settings.withdrawal_min_fee)
        return {
            "amount": amount,
            "fee": fee,
            "fee_percent": self.settings.withdrawal_fee_percent,
            "net_amount": max(0.0, amount - fee),
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_position(self, position_id: str, owner_address: str | None = None) -> Position:
        with Session(self.engine) as session:
            stmt = select(Position).where(Position.position_id == position_id)
            if owner_address is not None:
                stmt = stmt.where(Position.owner_address == owner_address)
            position = session.exec(stmt).first()
        if position is None:
            raise PositionNotFound(f"Position {position_id} not found")
        return position

    def list_positions_for_owner(
        self,
        owner_address: str,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Position]:
        with Session(self.engine) as session:
            stmt = select(Position).where(Position.owner_address == owner_address)
            if status is not None:
                stmt = stmt.where(Position.status == status)
            stmt = stmt.order_by(Position.created_at.desc(), Position.id.desc()).offset(offset).limit(limit)
            return list(session.exec(stmt).all())

    def get_earnings_history(
        self,
        position_id: str,
        days: int = 30,
        owner_address: str | None = None,
    ) -> list[dict]:
        """Daily ``{timestamp, balance, earnings}`` points, regenerated on every call."""
        position = self.get_position(position_id, owner_address)
        started = as_utc(position.lending_started_at)
        if started is None:
            return []

        now = as_utc(self.clock())
        daily_rate = position.current_apy / 365 / 100
        principal = position.bridged_amount
        points = []
        for i in range(days, -1, -1):
            timestamp = now - timedelta(days=i)
            if timestamp < started:
                continue
            elapsed = (timestamp - started).total_seconds() / DAY_SECONDS
            earnings = principal * daily_rate * elapsed
            points.append({
                "timestamp": timestamp,
                "balance": principal + earnings,
                "earnings": earnings,
            })
        return points

    def get_owner_stats(self, owner_address: str) -> dict:
        with Session(self.engine) as session:
            positions = session.exec(
                select(Position).where(Position.owner_address == owner_address)
            ).all()
            active = [p for p in positions if p.status == LENDING_ACTIVE]
            return {
                "total_deposited": sum(p.deposited_amount for p in positions),
                "total_current_value": sum(p.current_value for p in active),
                "total_earnings": sum(p.accrued_interest for p in positions),
                "active_positions": len(active),
                "completed_positions": sum(1 for p in positions if p.status == COMPLETED),
            }

    @staticmethod
    def summarize(position: Position) -> dict:
        return {
            "position_id": position.position_id,
            "status": position.status,
            "deposited_amount": position.deposited_amount,
            "current_value": position.current_value,
            "accrued_interest": position.accrued_interest,
            "current_apy": position.current_apy,
            "deposited_at": as_utc(position.lending_started_at),
            "last_updated_at": as_utc(position.updated_at),
        }
