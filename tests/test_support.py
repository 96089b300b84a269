"""Tests for request schemas, the scheduler job and operator notifications."""

import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from earn.engine import scheduler as scheduler_module
from earn.schemas.position import (
    DepositObservedRequest,
    DepositQuoteSchema,
    PositionCreate,
    WithdrawRequest,
)
from earn.services import notifier as notifier_module
from earn.services.collaborators import DepositQuote
from earn.services.notifier import TelegramBot, notify
from tests.conftest import DESTINATION, OWNER, make_active


# ---------------------------------------------------------------------------
# 1. Schema validation tests
# ---------------------------------------------------------------------------

class TestPositionCreateSchema:
    def test_owner_address_trimmed(self):
        body = PositionCreate(owner_address=f"  {OWNER} ", amount=1.0)
        assert body.owner_address == OWNER

    def test_blank_owner_rejected(self):
        with pytest.raises(ValidationError):
            PositionCreate(owner_address="   ", amount=1.0)

    def test_blank_pool_id_is_none(self):
        body = PositionCreate(owner_address=OWNER, amount=1.0, pool_id="  ")
        assert body.pool_id is None


class TestOtherSchemas:
    def test_quote_schema_converts_back(self):
        quote = DepositQuote(
            bridge_address="t1" + "d" * 33,
            expected_amount=0.995,
            eta_minutes=10,
            fee_percent=0.5,
            intent_id="INTENT-1",
            encoded_args="e30=",
        )
        assert DepositQuoteSchema.from_quote(quote).to_quote() == quote

    def test_withdraw_addresses_trimmed(self):
        body = WithdrawRequest(owner_address=f"{OWNER}\n", destination_address=f" {DESTINATION}")
        assert body.destination_address == DESTINATION
        assert body.amount is None

    def test_deposit_observed_requires_tx_ref(self):
        with pytest.raises(ValidationError):
            DepositObservedRequest(source_tx_ref="")


# ---------------------------------------------------------------------------
# 2. Scheduler job
# ---------------------------------------------------------------------------

class _Watcher:
    async def sweep(self):
        return None


def test_add_watcher_job_replaces_existing():
    watcher = _Watcher()
    try:
        scheduler_module.add_watcher_job(watcher, interval_seconds=5)
        scheduler_module.add_watcher_job(watcher, interval_seconds=7)

        job = scheduler_module.scheduler.get_job(scheduler_module.WATCHER_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(seconds=7)
        assert job.max_instances == 1
        assert job.coalesce is True
        assert len(scheduler_module.scheduler.get_jobs()) == 1
    finally:
        scheduler_module.scheduler.remove_all_jobs()


def test_stop_scheduler_when_not_running():
    scheduler_module.stop_scheduler()
    assert scheduler_module.scheduler.running is False


# ---------------------------------------------------------------------------
# 3. Operator notifications
# ---------------------------------------------------------------------------

def test_notify_without_bot_logs(monkeypatch, caplog):
    monkeypatch.setattr(notifier_module, "_bot_instance", None)

    with caplog.at_level(logging.DEBUG, logger="earn.services.notifier"):
        notify("position failed")

    assert "no bot" in caplog.text


@pytest.mark.asyncio
async def test_notify_sends_on_running_loop(monkeypatch):
    bot = TelegramBot("token", [1, 2], engine=None)
    bot._app = MagicMock()
    bot._app.bot.send_message = AsyncMock()
    monkeypatch.setattr(notifier_module, "_bot_instance", bot)

    notify("position failed")
    await asyncio.gather(*bot._sends)

    assert bot._app.bot.send_message.await_count == 2
    bot._app.bot.send_message.assert_any_await(chat_id=1, text="position failed")


def test_notify_outside_event_loop_logs(monkeypatch, caplog):
    bot = TelegramBot("token", [1], engine=None)
    bot._app = MagicMock()
    monkeypatch.setattr(notifier_module, "_bot_instance", bot)

    notify("position failed")

    assert "Failed to schedule Telegram notification" in caplog.text


@pytest.mark.asyncio
async def test_send_notification_continues_after_failure(caplog):
    bot = TelegramBot("token", [1, 2], engine=None)
    bot._app = MagicMock()
    bot._app.bot.send_message = AsyncMock(side_effect=[Exception("blocked"), None])

    await bot.send_notification("hello")

    assert bot._app.bot.send_message.await_count == 2
    assert "Failed to send Telegram notification" in caplog.text


def _update(user_id: int):
    update = MagicMock()
    update.effective_user.id = user_id
    update.message.reply_text = AsyncMock()
    return update


@pytest.mark.asyncio
async def test_commands_reject_unknown_users(engine):
    bot = TelegramBot("token", [1], engine=engine)
    update = _update(99)

    await bot._cmd_status(update, None)

    update.message.reply_text.assert_awaited_once_with("Unauthorized.")


@pytest.mark.asyncio
async def test_status_and_withdrawals_commands(orchestrator, engine):
    bot = TelegramBot("token", [1], engine=engine)
    position = await make_active(orchestrator)
    await orchestrator.create_position(OWNER, 2.0)

    update = _update(1)
    await bot._cmd_status(update, None)
    update.message.reply_text.assert_awaited_once_with("lending_active: 1\npending_deposit: 1")

    update = _update(1)
    await bot._cmd_withdrawals(update, None)
    update.message.reply_text.assert_awaited_once_with("No pending withdrawals.")

    await orchestrator.initiate_withdrawal(position.position_id, OWNER, DESTINATION)
    update = _update(1)
    await bot._cmd_withdrawals(update, None)
    reply = update.message.reply_text.await_args.args[0]
    assert reply.startswith(f"{position.position_id}: SIM-WD-")
