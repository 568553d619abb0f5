"""Tests for the per-account polling cycle."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlmodel import Session, select

from walletwatch.config import CycleConfig
from walletwatch.engine import account_job
from walletwatch.engine.account_job import AccountCycle, CycleResult, _period_label
from walletwatch.errors import PersistenceError, TransientFetchError
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.models.exchange_account import ExchangeAccount
from walletwatch.models.job_log import JobLog
from walletwatch.services.exchange_client import ExchangeClient
from walletwatch.services.pricing import CurrencyPair, MarketSnapshot
from walletwatch.services.store import Store
from walletwatch.services.valuation import Valuation
from walletwatch.utils.constants import (
    FEED_DEPOSITS,
    FEED_OPEN_ORDERS,
    FEED_TRADES,
    FEED_WITHDRAWALS,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
EXCHANGE = "binance-main"


def _config(**overrides) -> CycleConfig:
    values = dict(
        exchange=EXCHANGE,
        reference_currency="BTC",
        fiat_currency="USDT",
        notification_limits={FEED_TRADES: 30, FEED_OPEN_ORDERS: 5, FEED_DEPOSITS: 10, FEED_WITHDRAWALS: 10},
        notification_flags={
            "buy": True,
            "sell": True,
            FEED_OPEN_ORDERS: True,
            FEED_DEPOSITS: True,
            FEED_WITHDRAWALS: True,
        },
        fetch_timeout=1.0,
    )
    values.update(overrides)
    return CycleConfig(**values)


def _record(feed: str, record_id: str, minutes_ago: int = 5) -> ActivityRecord:
    timestamp = T0 - timedelta(minutes=minutes_ago)
    if feed in (FEED_TRADES, FEED_OPEN_ORDERS):
        return ActivityRecord(
            exchange=EXCHANGE, feed=feed, record_id=record_id, base="BTC", terms="ETH",
            side="buy", quantity=1.0, price=0.05, cost=0.05, timestamp=timestamp,
        )
    return ActivityRecord(
        exchange=EXCHANGE, feed=feed, record_id=record_id, currency="BTC",
        side="deposit" if feed == FEED_DEPOSITS else "withdrawal", quantity=0.1, timestamp=timestamp,
    )


class FakeExchange:
    """Exchange client returning fresh records built from identifier lists."""

    def __init__(self):
        self.trade_ids: list[str] = []
        self.open_order_ids: list[str] = []
        self.deposit_ids: list[str] = []
        self.withdrawal_ids: list[str] = []
        self.balances: list[tuple[str, float]] = []
        self.prices: dict[CurrencyPair, float] = {}
        self.trade_since: list = []
        self.transfer_since: list = []
        self.balance_calls = 0

    async def get_trades(self, since):
        self.trade_since.append(since)
        return [_record(FEED_TRADES, i) for i in self.trade_ids]

    async def get_open_orders(self):
        return [_record(FEED_OPEN_ORDERS, i) for i in self.open_order_ids]

    async def get_deposits_withdrawals(self, since):
        self.transfer_since.append(since)
        return (
            [_record(FEED_DEPOSITS, i) for i in self.deposit_ids],
            [_record(FEED_WITHDRAWALS, i) for i in self.withdrawal_ids],
        )

    async def get_balances(self):
        self.balance_calls += 1
        return list(self.balances)

    async def get_market_snapshot(self):
        return MarketSnapshot(prices=self.prices)


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def sent():
    return []


def _cycle(config, exchange, store, sent, now=T0) -> AccountCycle:
    return AccountCycle(config, exchange, store, sent.append, clock=lambda: now)


# ---------------------------------------------------------------------------
# Activity feeds
# ---------------------------------------------------------------------------

class TestActivityFeeds:
    @pytest.mark.asyncio
    async def test_first_run_backlog_sends_one_notice(self, exchange, store, sent):
        exchange.trade_ids = [str(i) for i in range(35)]
        result = await _cycle(_config(), exchange, store, sent).run()

        assert result.new_records[FEED_TRADES] == 35
        assert len(sent) == 1
        assert "35" in sent[0]
        assert exchange.trade_since == [None]
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) == T0

    @pytest.mark.asyncio
    async def test_second_run_only_sends_new_records(self, exchange, store, sent):
        exchange.trade_ids = [str(i) for i in range(35)]
        await _cycle(_config(), exchange, store, sent).run()
        sent.clear()

        exchange.trade_ids.append("35")
        later = T0 + timedelta(hours=1)
        result = await _cycle(_config(), exchange, store, sent, now=later).run()

        assert result.new_records[FEED_TRADES] == 1
        assert len(sent) == 1
        assert "New binance-main trade" in sent[0]
        assert exchange.trade_since[-1] == T0 - timedelta(hours=48)
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) == later

    @pytest.mark.asyncio
    async def test_rerun_with_same_data_is_silent(self, exchange, store, sent):
        exchange.trade_ids = ["a", "b"]
        await _cycle(_config(), exchange, store, sent).run()
        assert len(sent) == 2
        sent.clear()

        result = await _cycle(_config(), exchange, store, sent, now=T0 + timedelta(hours=1)).run()
        assert result.new_records[FEED_TRADES] == 0
        assert sent == []

    @pytest.mark.asyncio
    async def test_checkpoint_never_regresses(self, exchange, store, sent):
        await _cycle(_config(), exchange, store, sent).run()
        await _cycle(_config(), exchange, store, sent, now=T0 - timedelta(hours=2)).run()
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) == T0

    @pytest.mark.asyncio
    async def test_disabled_flag_records_without_notifying(self, exchange, store, sent):
        exchange.open_order_ids = ["o1"]
        flags = {"buy": True, "sell": True, FEED_OPEN_ORDERS: False,
                 FEED_DEPOSITS: True, FEED_WITHDRAWALS: True}
        result = await _cycle(_config(notification_flags=flags), exchange, store, sent).run()

        assert result.new_records[FEED_OPEN_ORDERS] == 1
        assert sent == []
        assert store.existing_record_ids(EXCHANGE, FEED_OPEN_ORDERS) == {"o1"}

    @pytest.mark.asyncio
    async def test_transfers_keep_separate_checkpoints(self, exchange, store, sent):
        exchange.deposit_ids = ["d1", "d2"]
        exchange.withdrawal_ids = ["w1"]
        result = await _cycle(_config(), exchange, store, sent).run()

        assert result.new_records[FEED_DEPOSITS] == 2
        assert result.new_records[FEED_WITHDRAWALS] == 1
        assert len(sent) == 3
        assert store.get_checkpoint(EXCHANGE, FEED_DEPOSITS) == T0
        assert store.get_checkpoint(EXCHANGE, FEED_WITHDRAWALS) == T0

    @pytest.mark.asyncio
    async def test_transfer_window_uses_earliest_checkpoint(self, exchange, store, sent):
        store.set_checkpoint(EXCHANGE, FEED_DEPOSITS, T0 - timedelta(hours=1))
        store.set_checkpoint(EXCHANGE, FEED_WITHDRAWALS, T0 - timedelta(hours=10))
        await _cycle(_config(), exchange, store, sent).run()
        assert exchange.transfer_since == [T0 - timedelta(hours=58)]

    @pytest.mark.asyncio
    async def test_disabled_feeds_are_not_fetched(self, exchange, store, sent):
        config = _config(enabled_feeds=(FEED_TRADES,))
        await _cycle(config, exchange, store, sent).run()
        assert exchange.transfer_since == []
        assert store.get_checkpoint(EXCHANGE, FEED_OPEN_ORDERS) is None


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestFailures:
    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_checkpoint(self, exchange, store, sent):
        exchange.get_trades = AsyncMock(side_effect=TransientFetchError("binance fetch_my_trades failed"))
        exchange.deposit_ids = ["d1"]
        result = await _cycle(_config(), exchange, store, sent).run()

        assert result.status == "partial"
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) is None
        # Other feeds still run
        assert store.get_checkpoint(EXCHANGE, FEED_DEPOSITS) == T0
        assert exchange.balance_calls == 1

    @pytest.mark.asyncio
    async def test_slow_fetch_times_out(self, exchange, store, sent):
        async def hang(since):
            await asyncio.sleep(5)
            return []

        exchange.get_trades = hang
        result = await _cycle(_config(fetch_timeout=0.01), exchange, store, sent).run()

        assert any("timed out" in e for e in result.errors)
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) is None

    @pytest.mark.asyncio
    async def test_persistence_failure_aborts_cycle(self, exchange, sent):
        store = MagicMock(spec=Store)
        store.get_checkpoint.return_value = None
        store.existing_record_ids.return_value = set()
        store.record_feed.side_effect = PersistenceError("disk full")
        exchange.trade_ids = ["1"]

        result = await _cycle(_config(), exchange, store, sent).run()

        assert result.fatal
        assert result.status == "error"
        assert sent == []
        assert exchange.balance_calls == 0
        store.persist_balance_snapshot.assert_not_called()


# ---------------------------------------------------------------------------
# Valuation
# ---------------------------------------------------------------------------

class TestValuationStep:
    def _prime(self, exchange):
        exchange.balances = [("BTC", 1.0), ("ETH", 10.0), ("USDT", 6000.0)]
        exchange.prices = {
            CurrencyPair("BTC", "ETH"): 0.05,
            CurrencyPair("USDT", "BTC"): 60000.0,
        }

    @pytest.mark.asyncio
    async def test_snapshot_is_persisted(self, exchange, store, sent):
        self._prime(exchange)
        result = await _cycle(_config(), exchange, store, sent).run()

        assert result.reference_balance == pytest.approx(1.6)
        latest = store.latest_balance_snapshot(EXCHANGE)
        assert latest.reference_balance == pytest.approx(1.6)
        assert latest.fiat_balance == pytest.approx(96000.0)
        assert sent == []

    @pytest.mark.asyncio
    async def test_balance_report_compares_with_lookback(self, exchange, store, sent):
        self._prime(exchange)
        store.persist_balance_snapshot(
            EXCHANGE, Valuation(total=1.0), "BTC", "USDT", 60000.0, T0 - timedelta(hours=25)
        )
        result = await _cycle(_config(balance_notifications=True), exchange, store, sent).run()

        assert result.notifications == 1
        assert "24h change: +60.00% BTC" in sent[0]

    @pytest.mark.asyncio
    async def test_balance_fetch_failure_skips_valuation(self, exchange, store, sent):
        exchange.get_balances = AsyncMock(side_effect=TransientFetchError("down"))
        result = await _cycle(_config(), exchange, store, sent).run()
        assert store.latest_balance_snapshot(EXCHANGE) is None
        assert result.status == "partial"


def test_period_label():
    assert _period_label(timedelta(hours=24)) == "24h"
    assert _period_label(timedelta(hours=48)) == "2d"
    assert _period_label(timedelta(hours=12)) == "12h"
    assert _period_label(timedelta(hours=1.5)) == "1.5h"


def test_cycle_result_status():
    assert CycleResult().status == "success"
    assert CycleResult(errors=["x"]).status == "partial"
    assert CycleResult(errors=["x"], fatal=True).status == "error"


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped(monkeypatch):
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_cycle(account_id, force=False):
        started.set()
        await release.wait()
        return "done"

    log = MagicMock()
    monkeypatch.setattr(account_job, "_run_account_cycle_once", slow_cycle)
    monkeypatch.setattr(account_job, "_log_cycle", log)

    first = asyncio.create_task(account_job.run_account_cycle(9001))
    await started.wait()
    second = await account_job.run_account_cycle(9001)
    release.set()

    assert await first == "done"
    assert second is None
    log.assert_called_once()
    assert log.call_args.kwargs["action"] == "cycle_skipped_overlap"


def _malformed_trade_client():
    client = ExchangeClient(EXCHANGE, "binance", api_key="key", api_secret="secret")
    client._exchange = MagicMock()
    client._exchange.fetch_my_trades = AsyncMock(return_value=[
        {"id": "t1", "symbol": None, "side": "buy", "amount": 1, "price": 0.05, "timestamp": 1772366100000},
    ])
    client._exchange.fetch_open_orders = AsyncMock(return_value=[])
    client._exchange.fetch_deposits = AsyncMock(return_value=[])
    client._exchange.fetch_withdrawals = AsyncMock(return_value=[])
    client._exchange.fetch_balance = AsyncMock(return_value={"total": {"BTC": 1.0}})
    client._exchange.fetch_tickers = AsyncMock(return_value={})
    client._exchange.close = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_malformed_record_only_skips_its_feed(store, sent):
    client = _malformed_trade_client()
    result = await _cycle(_config(), client, store, sent).run()

    assert result.status == "partial"
    assert any("malformed trade" in e for e in result.errors)
    assert store.get_checkpoint(EXCHANGE, FEED_TRADES) is None
    assert store.get_checkpoint(EXCHANGE, FEED_DEPOSITS) == T0
    assert result.reference_balance == pytest.approx(1.0)


@pytest.fixture
def stored_account(engine, monkeypatch):
    monkeypatch.setattr(account_job, "engine", engine)
    with Session(engine) as session:
        account = ExchangeAccount(name=EXCHANGE, exchange_id="binance")
        session.add(account)
        session.commit()
        session.refresh(account)
        return account.id


def _job_logs(engine):
    with Session(engine) as session:
        return session.exec(select(JobLog)).all()


@pytest.mark.asyncio
async def test_malformed_record_logs_partial_cycle(engine, stored_account, monkeypatch):
    client = _malformed_trade_client()
    monkeypatch.setattr(account_job, "build_client", lambda account: client)

    result = await account_job.run_account_cycle(stored_account)

    assert result.status == "partial"
    logs = _job_logs(engine)
    assert [log.status for log in logs] == ["partial"]
    assert "malformed trade" in logs[0].message
    assert Store(engine).get_checkpoint(EXCHANGE, FEED_TRADES) is None
    client._exchange.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_unexpected_cycle_error_is_logged(engine, stored_account, monkeypatch):
    client = _malformed_trade_client()
    monkeypatch.setattr(account_job, "build_client", lambda account: client)
    monkeypatch.setattr(AccountCycle, "run", AsyncMock(side_effect=RuntimeError("boom")))

    result = await account_job.run_account_cycle(stored_account)

    assert result is None
    logs = _job_logs(engine)
    assert [(log.status, log.message) for log in logs] == [("error", "boom")]
    client._exchange.close.assert_awaited_once()
