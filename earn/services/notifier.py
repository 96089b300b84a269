"""Telegram alerts for operators, with /status and /withdrawals commands.

The bot polls on the application's event loop. ``notify`` schedules a send on
that loop and returns immediately.
"""

import asyncio
import logging

from sqlalchemy import func
from sqlmodel import Session, select
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from earn.config import settings
from earn.models.position import Position
from earn.utils.constants import BRIDGING_TO_ZCASH, WATCH_WITHDRAWAL

logger = logging.getLogger(__name__)

_bot_instance: "TelegramBot | None" = None


class TelegramBot:
    def __init__(self, token: str, chat_ids: list[int], engine):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.engine = engine
        self._app: Application | None = None
        self._sends: set[asyncio.Task] = set()

    async def _authorized(self, update: Update) -> bool:
        user = update.effective_user
        if user is not None and user.id in self.chat_ids:
            return True
        if update.message:
            await update.message.reply_text("Unauthorized.")
        return False

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Position counts per status."""
        if not await self._authorized(update):
            return
        with Session(self.engine) as session:
            rows = session.exec(select(Position.status, func.count()).group_by(Position.status)).all()
        lines = [f"{status}: {count}" for status, count in sorted(rows)]
        await update.message.reply_text("\n".join(lines) if lines else "No positions.")

    async def _cmd_withdrawals(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Withdrawals still waiting on the reverse bridge."""
        if not await self._authorized(update):
            return
        with Session(self.engine) as session:
            positions = session.exec(select(Position).where(Position.status == BRIDGING_TO_ZCASH)).all()

        lines = []
        for pos in positions:
            state = pos.pending_watcher_state or {}
            if state.get("kind") == WATCH_WITHDRAWAL:
                lines.append(
                    f"{pos.position_id}: {state.get('pending_ref')} | "
                    f"checks={state.get('check_count', 0)} | since {state.get('created_at')}"
                )
        await update.message.reply_text("\n".join(lines) if lines else "No pending withdrawals.")

    async def send_notification(self, message: str):
        if self._app is None:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def schedule(self, message: str):
        task = asyncio.get_running_loop().create_task(self.send_notification(message))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def start(self):
        self._app = Application.builder().token(self.token).build()
        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("withdrawals", self._cmd_withdrawals))
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()
        logger.info("Telegram bot polling")

    async def stop(self):
        if self._app is None:
            return
        await self._app.updater.stop()
        await self._app.stop()
        await self._app.shutdown()
        self._app = None


def init_bot(engine) -> TelegramBot:
    global _bot_instance
    _bot_instance = TelegramBot(settings.telegram_bot_token, settings.telegram_chat_ids, engine)
    return _bot_instance


def notify(message: str):
    """Send a Telegram notification without waiting for it."""
    bot = _bot_instance
    if bot is None or bot._app is None:
        logger.debug(f"Notification not sent (no bot): {message}")
        return
    try:
        bot.schedule(message)
    except RuntimeError as e:
        logger.warning(f"Failed to schedule Telegram notification: {e}")
