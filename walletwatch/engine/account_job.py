"""Core per-account polling cycle.

This is the function APScheduler calls on each interval. It orchestrates:
fetch → change detection → persistence + checkpoint → throttled notifications,
then balance valuation → snapshot persistence → optional balance report.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from walletwatch.config import CycleConfig, build_cycle_config, settings
from walletwatch.database import engine
from walletwatch.errors import ConfigurationError, PersistenceError, TransientFetchError
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.models.job_log import JobLog
from walletwatch.services import formatting, throttle
from walletwatch.services.change_detector import detect_new, fetch_since
from walletwatch.services.encryption import decrypt
from walletwatch.services.pricing import to_fiat
from walletwatch.services.store import Store
from walletwatch.services.valuation import valuate
from walletwatch.utils.constants import (
    FEED_DEPOSITS,
    FEED_OPEN_ORDERS,
    FEED_TRADES,
    FEED_WITHDRAWALS,
    SIDE_BUY,
    SIDE_SELL,
)

logger = logging.getLogger(__name__)
_account_locks: dict[int, asyncio.Lock] = {}
_account_locks_guard = asyncio.Lock()


@dataclass
class CycleResult:
    new_records: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    notifications: int = 0
    reference_balance: float | None = None
    fatal: bool = False

    @property
    def status(self) -> str:
        if self.fatal:
            return "error"
        return "partial" if self.errors else "success"


class AccountCycle:
    """One fetch → detect → persist → notify → valuate pass for one account.

    Feeds are processed in order and independently: a failed fetch skips
    that feed and leaves its checkpoint untouched, a storage failure ends
    the whole cycle.
    """

    def __init__(
        self,
        config: CycleConfig,
        client,
        store: Store,
        notify: Callable[[str], None],
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.client = client
        self.store = store
        self.notify = notify
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def exchange(self) -> str:
        return self.config.exchange

    async def run(self) -> CycleResult:
        now = self._clock()
        result = CycleResult()
        try:
            if FEED_TRADES in self.config.enabled_feeds:
                await self._process_feed(FEED_TRADES, self.client.get_trades, now, result)
            if FEED_OPEN_ORDERS in self.config.enabled_feeds:
                await self._process_feed(
                    FEED_OPEN_ORDERS, lambda _since: self.client.get_open_orders(), now, result
                )
            await self._process_transfers(now, result)
            await self._process_balances(now, result)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(f"[{self.exchange}] Storage failure, aborting cycle: {e}", exc_info=True)
            result.errors.append(str(e))
            result.fatal = True
        return result

    async def _fetch(self, what: str, coro: Awaitable):
        try:
            return await asyncio.wait_for(coro, timeout=self.config.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"{what} timed out after {self.config.fetch_timeout}s") from e

    async def _process_feed(self, feed: str, fetch, now: datetime, result: CycleResult):
        last_checked = self.store.get_checkpoint(self.exchange, feed)
        since = fetch_since(last_checked, self.config.refetch_overlap)
        try:
            fetched = await self._fetch(feed, fetch(since))
        except TransientFetchError as e:
            logger.warning(f"[{self.exchange}] {feed} fetch failed, retrying next tick: {e}")
            result.errors.append(f"{feed}: {e}")
            return
        self._record(feed, fetched, now, result)

    async def _process_transfers(self, now: datetime, result: CycleResult):
        """Deposits and withdrawals share one fetch but keep separate checkpoints."""
        feeds = [f for f in (FEED_DEPOSITS, FEED_WITHDRAWALS) if f in self.config.enabled_feeds]
        if not feeds:
            return

        windows = [
            fetch_since(self.store.get_checkpoint(self.exchange, f), self.config.refetch_overlap)
            for f in feeds
        ]
        since = None if any(w is None for w in windows) else min(windows)
        try:
            deposits, withdrawals = await self._fetch(
                "deposits/withdrawals", self.client.get_deposits_withdrawals(since)
            )
        except TransientFetchError as e:
            logger.warning(f"[{self.exchange}] deposits/withdrawals fetch failed, retrying next tick: {e}")
            result.errors.append(f"deposits/withdrawals: {e}")
            return

        fetched = {FEED_DEPOSITS: deposits, FEED_WITHDRAWALS: withdrawals}
        for feed in feeds:
            self._record(feed, fetched[feed], now, result)

    def _record(self, feed: str, fetched: list[ActivityRecord], now: datetime, result: CycleResult):
        existing = self.store.existing_record_ids(
            self.exchange, feed, [r.record_id for r in fetched]
        )
        new_records = detect_new(fetched, existing)
        self.store.record_feed(self.exchange, feed, new_records, now)
        result.new_records[feed] = len(new_records)
        if new_records:
            logger.info(f"[{self.exchange}] {len(new_records)} new {feed}")
        result.notifications += self._notify_feed(feed, new_records)

    def _notify_feed(self, feed: str, records: list[ActivityRecord]) -> int:
        if not records or not self._feed_notifications_enabled(feed):
            return 0
        limit = self.config.notification_limits.get(feed, 0)
        decision = throttle.decide(records, limit, feed, self.exchange)
        if isinstance(decision, throttle.Suppress):
            logger.info(f"[{self.exchange}] Suppressed {decision.count} {feed} notifications")
        messages = throttle.emit_messages(decision, feed, self.config.notification_flags)
        for message in messages:
            self.notify(message)
        return len(messages)

    def _feed_notifications_enabled(self, feed: str) -> bool:
        flags = self.config.notification_flags
        if feed == FEED_TRADES:
            return flags.get(SIDE_BUY, False) or flags.get(SIDE_SELL, False)
        return flags.get(feed, False)

    async def _process_balances(self, now: datetime, result: CycleResult):
        cfg = self.config
        try:
            balances = await self._fetch("balances", self.client.get_balances())
            snapshot = await self._fetch("market snapshot", self.client.get_market_snapshot())
        except TransientFetchError as e:
            logger.warning(f"[{self.exchange}] Valuation skipped: {e}")
            result.errors.append(f"balances: {e}")
            return

        valuation = valuate(
            balances,
            snapshot,
            lambda reference, currency, quantity: self.store.get_average_buy_price(
                reference, currency, self.exchange, quantity
            ),
            cfg.reference_currency,
            cfg.fiat_currency,
            via=cfg.triangulation_currency,
        )
        fiat_total = to_fiat(
            snapshot, valuation.total, cfg.reference_currency, cfg.fiat_currency, via=cfg.triangulation_currency
        )
        if valuation.unpriced:
            logger.info(f"[{self.exchange}] No price path for: {', '.join(valuation.unpriced)}")

        previous = self.store.get_balance_snapshot(self.exchange, now - cfg.balance_lookback)
        self.store.persist_balance_snapshot(
            self.exchange, valuation, cfg.reference_currency, cfg.fiat_currency, fiat_total, now
        )
        result.reference_balance = valuation.total
        logger.info(
            f"[{self.exchange}] Balance {valuation.total:.8f} {cfg.reference_currency} "
            f"({fiat_total if fiat_total is not None else 'n/a'} {cfg.fiat_currency})"
        )

        if cfg.balance_notifications:
            self.notify(formatting.format_balance_report(
                self.exchange,
                valuation,
                cfg.reference_currency,
                cfg.fiat_currency,
                fiat_total,
                previous.reference_balance if previous else None,
                previous.fiat_balance if previous else None,
                period=_period_label(cfg.balance_lookback),
            ))
            result.notifications += 1


def _period_label(period: timedelta) -> str:
    hours = period.total_seconds() / 3600
    if hours > 24 and hours % 24 == 0:
        return f"{int(hours // 24)}d"
    return f"{hours:g}h"


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------

async def run_account_cycle(account_id: int, force: bool = False) -> CycleResult | None:
    """Run one cycle per account, skipping if a prior cycle is still in-flight."""
    lock = await _get_account_lock(account_id)
    if lock.locked():
        logger.warning(f"[account_{account_id}] Skipping overlapping cycle")
        _log_cycle(
            account_id,
            "skipped",
            action="cycle_skipped_overlap",
            message="Skipped cycle because previous run is still in progress",
        )
        return None

    async with lock:
        return await _run_account_cycle_once(account_id, force=force)


async def _get_account_lock(account_id: int) -> asyncio.Lock:
    async with _account_locks_guard:
        lock = _account_locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            _account_locks[account_id] = lock
        return lock


async def _run_account_cycle_once(account_id: int, force: bool = False) -> CycleResult | None:
    from walletwatch.services.telegram_bot import notify

    with Session(engine) as session:
        account = session.get(ExchangeAccount, account_id)
    if not account or (not account.is_enabled and not force):
        return None

    logger.info(f"[{account.name}] Starting cycle")
    try:
        cycle_config = build_cycle_config(account, settings)
        client = build_client(account)
    except (ConfigurationError, ValueError) as e:
        logger.error(f"[{account.name}] Cannot start cycle: {e}")
        _log_cycle(account_id, "error", message=str(e))
        return None

    try:
        cycle = AccountCycle(cycle_config, client, Store(engine), notify)
        result = await cycle.run()
    except Exception as e:
        logger.error(f"[{account.name}] Cycle error: {e}", exc_info=True)
        _log_cycle(account_id, "error", message=str(e))
        return None
    finally:
        await client.close()

    _log_cycle(
        account_id,
        result.status,
        message="; ".join(result.errors) or None,
        result=result,
    )
    logger.info(f"[{account.name}] Cycle finished ({result.status}): {result.new_records}")
    return result


def build_client(account: ExchangeAccount):
    """ExchangeClient for an account, with credentials decrypted."""
    from walletwatch.services.exchange_client import ExchangeClient

    return ExchangeClient(
        account_name=account.name,
        exchange_id=account.exchange_id,
        api_key=decrypt(account.api_key_encrypted),
        api_secret=decrypt(account.api_secret_encrypted),
        api_password=decrypt(account.api_password_encrypted),
        timeout_ms=settings.exchange_timeout_ms,
        reference_currency=settings.reference_currency.upper(),
    )


def _log_cycle(
    account_id: int,
    status: str,
    action: str | None = "cycle",
    message: str | None = None,
    result: CycleResult | None = None,
):
    """Write a JobLog entry."""
    new = result.new_records if result else {}
    try:
        with Session(engine) as session:
            log = JobLog(
                account_id=account_id,
                status=status,
                action=action,
                new_trades=new.get(FEED_TRADES, 0),
                new_open_orders=new.get(FEED_OPEN_ORDERS, 0),
                new_deposits=new.get(FEED_DEPOSITS, 0),
                new_withdrawals=new.get(FEED_WITHDRAWALS, 0),
                reference_balance=result.reference_balance if result else None,
                message=message,
                details={"errors": result.errors, "notifications": result.notifications} if result else None,
            )
            session.add(log)
            session.commit()
    except SQLAlchemyError as e:
        logger.error(f"[account_{account_id}] Could not write job log: {e}")
