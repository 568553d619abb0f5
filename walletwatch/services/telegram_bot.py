"""Telegram bot for activity notifications and remote control."""

import asyncio
import logging
import threading
from typing import Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)
from sqlmodel import Session, select

from walletwatch.config import settings

logger = logging.getLogger(__name__)

# Telegram rejects messages above 4096 characters
MAX_MESSAGE_LENGTH = 4000

_bot_instance: Optional["TelegramBot"] = None


def split_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split on line boundaries so each chunk fits in one Telegram message."""
    if len(message) <= limit:
        return [message]
    chunks, current = [], ""
    for line in message.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return [c.rstrip("\n") for c in chunks]


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop."""

    def __init__(self, token: str, chat_ids: list[int]):
        self.token = token
        self.chat_ids = set(chat_ids)
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from walletwatch.engine.scheduler import get_scheduler_status
        from walletwatch.database import engine
        from walletwatch.models.exchange_account import ExchangeAccount

        status = get_scheduler_status()
        with Session(engine) as session:
            accounts = session.exec(select(ExchangeAccount)).all()

        scheduler_str = "running" if status["running"] else "stopped"
        lines = [
            f"Scheduler: {scheduler_str}",
            f"Jobs: {status['job_count']}",
        ]
        for account in accounts:
            state = "on" if account.is_enabled else "off"
            lines.append(f"{account.name} ({account.exchange_id}): {state}, every {account.schedule_interval}")
        await update.message.reply_text("\n".join(lines))

    async def _cmd_balance(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from datetime import datetime, timedelta, timezone
        from walletwatch.database import engine
        from walletwatch.models.exchange_account import ExchangeAccount
        from walletwatch.services import formatting
        from walletwatch.services.store import Store

        store = Store(engine)
        with Session(engine) as session:
            accounts = session.exec(select(ExchangeAccount)).all()

        lookback = timedelta(hours=settings.balance_lookback_hours)
        lines = []
        for account in accounts:
            latest = store.latest_balance_snapshot(account.name)
            if latest is None:
                lines.append(f"{account.name}: no balance recorded yet")
                continue
            previous = store.get_balance_snapshot(account.name, datetime.now(timezone.utc) - lookback)
            lines.append(formatting.format_balance_line(
                account.name,
                latest.reference_currency,
                latest.reference_balance,
                latest.fiat_currency,
                latest.fiat_balance,
                previous.reference_balance if previous else None,
            ))

        await update.message.reply_text("\n".join(lines) or "No accounts configured.")

    async def _cmd_pause_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, pause all", callback_data="confirm_pause_all"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Stop polling all exchange accounts?",
            reply_markup=keyboard,
        )

    async def _cmd_resume_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from walletwatch.engine.scheduler import set_all_accounts_enabled

        count = set_all_accounts_enabled(True)
        await update.message.reply_text(f"Resumed {count} accounts.")

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_pause_all":
            from walletwatch.engine.scheduler import set_all_accounts_enabled

            count = set_all_accounts_enabled(False)
            await query.edit_message_text(f"Paused {count} accounts.")

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            for chunk in split_message(message):
                try:
                    await self._app.bot.send_message(chat_id=chat_id, text=chunk)
                except Exception as e:
                    logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("balance", self._cmd_balance))
        self._app.add_handler(CommandHandler("pause_all", self._cmd_pause_all))
        self._app.add_handler(CommandHandler("resume_all", self._cmd_resume_all))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def init_bot() -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance


def notify(message: str) -> None:
    """Queue a message on the bot's loop (fire-and-forget).

    Without a running bot the message only goes to the log.
    """
    bot = get_bot()
    if bot is None or bot._loop is None:
        logger.info(f"Notification (no Telegram bot running):\n{message}")
        return
    future = asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot._loop)
    future.add_done_callback(_log_failure)


def _log_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning(f"Telegram notification failed: {exc}")
