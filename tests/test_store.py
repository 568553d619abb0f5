"""Tests for the SQLModel persistence store."""

from datetime import datetime, timedelta, timezone

import pytest

from walletwatch.errors import PersistenceError
from walletwatch.services.change_detector import as_utc
from walletwatch.services.valuation import HoldingValue, Valuation
from walletwatch.utils.constants import FEED_DEPOSITS, FEED_TRADES

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

EXCHANGE = "binance-main"


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------

class TestCheckpoints:
    def test_missing_checkpoint_is_none(self, store):
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) is None

    def test_set_and_get_is_utc(self, store):
        store.set_checkpoint(EXCHANGE, FEED_TRADES, T0)
        value = store.get_checkpoint(EXCHANGE, FEED_TRADES)
        assert value == T0
        assert value.tzinfo is not None

    def test_checkpoint_is_monotonic(self, store):
        store.set_checkpoint(EXCHANGE, FEED_TRADES, T0)
        returned = store.set_checkpoint(EXCHANGE, FEED_TRADES, T0 - timedelta(hours=1))
        assert returned == T0
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) == T0

    def test_feeds_are_independent(self, store):
        store.set_checkpoint(EXCHANGE, FEED_TRADES, T0)
        assert store.get_checkpoint(EXCHANGE, FEED_DEPOSITS) is None
        assert store.get_checkpoint("kraken", FEED_TRADES) is None


# ---------------------------------------------------------------------------
# Activity records
# ---------------------------------------------------------------------------

class TestRecordFeed:
    def test_records_and_checkpoint_written_together(self, store, make_trade):
        store.record_feed(EXCHANGE, FEED_TRADES, [make_trade(1), make_trade(2)], T0)
        assert store.existing_record_ids(EXCHANGE, FEED_TRADES) == {"1", "2"}
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) == T0

    def test_empty_batch_still_advances_checkpoint(self, store):
        store.record_feed(EXCHANGE, FEED_TRADES, [], T0)
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) == T0

    def test_failed_write_leaves_checkpoint(self, store, make_trade):
        with pytest.raises(PersistenceError):
            store.record_feed(EXCHANGE, FEED_TRADES, [make_trade(1), make_trade(1)], T0)
        assert store.get_checkpoint(EXCHANGE, FEED_TRADES) is None
        assert store.existing_record_ids(EXCHANGE, FEED_TRADES) == set()

    def test_existing_ids_narrowed_to_candidates(self, store, make_trade):
        store.persist_records([make_trade(1), make_trade(2)])
        assert store.existing_record_ids(EXCHANGE, FEED_TRADES, ["2", "3"]) == {"2"}
        assert store.existing_record_ids(EXCHANGE, FEED_TRADES, []) == set()

    def test_list_records_newest_first(self, store, make_trade):
        store.persist_records([
            make_trade(1, timestamp=T0 - timedelta(hours=2)),
            make_trade(2, timestamp=T0),
        ])
        rows = store.list_records(exchange=EXCHANGE, feed=FEED_TRADES)
        assert [r.record_id for r in rows] == ["2", "1"]


class TestAverageBuyPrice:
    def test_latest_buys_cover_quantity(self, store, make_trade):
        store.persist_records([
            make_trade(1, quantity=2.0, price=0.04, timestamp=T0 - timedelta(days=2)),
            make_trade(2, quantity=1.0, price=0.06, timestamp=T0 - timedelta(days=1)),
            make_trade(3, side="sell", quantity=5.0, price=0.10, timestamp=T0),
        ])
        price = store.get_average_buy_price("BTC", "ETH", EXCHANGE, 2.0)
        assert price == pytest.approx(0.05)

    def test_no_buys_is_zero(self, store):
        assert store.get_average_buy_price("BTC", "ETH", EXCHANGE, 1.0) == 0.0

    def test_other_exchange_ignored(self, store, make_trade):
        store.persist_records([make_trade(1, exchange="kraken")])
        assert store.get_average_buy_price("BTC", "ETH", EXCHANGE, 1.0) == 0.0


# ---------------------------------------------------------------------------
# Balance snapshots
# ---------------------------------------------------------------------------

def _valuation(total: float) -> Valuation:
    return Valuation(
        holdings=[
            HoldingValue("BTC", total, price=0.0, reference_value=total),
            HoldingValue("XYZ", 3.0, price=None, reference_value=None),
        ],
        total=total,
    )


class TestBalanceSnapshots:
    def test_nearest_prior_snapshot(self, store):
        for hours, total in ((48, 1.0), (25, 1.1), (1, 1.2)):
            store.persist_balance_snapshot(
                EXCHANGE, _valuation(total), "BTC", "USDT", None, T0 - timedelta(hours=hours)
            )
        found = store.get_balance_snapshot(EXCHANGE, T0 - timedelta(hours=24))
        assert found.reference_balance == 1.1
        assert as_utc(found.timestamp) == T0 - timedelta(hours=25)

    def test_no_prior_snapshot(self, store):
        store.persist_balance_snapshot(EXCHANGE, _valuation(1.0), "BTC", "USDT", None, T0)
        assert store.get_balance_snapshot(EXCHANGE, T0 - timedelta(hours=24)) is None

    def test_wallet_rows_follow_latest_snapshot(self, store):
        store.persist_balance_snapshot(EXCHANGE, _valuation(1.0), "BTC", "USDT", 60000.0, T0 - timedelta(hours=1))
        snapshot = store.persist_balance_snapshot(EXCHANGE, _valuation(2.0), "BTC", "USDT", 120000.0, T0)
        assert snapshot.id is not None
        assert snapshot.unpriced_currencies == "XYZ"

        rows = store.latest_wallet_balances(EXCHANGE)
        assert {r.currency for r in rows} == {"BTC", "XYZ"}
        btc = next(r for r in rows if r.currency == "BTC")
        assert btc.quantity == 2.0
        xyz = next(r for r in rows if r.currency == "XYZ")
        assert xyz.reference_value is None

    def test_history_in_time_order(self, store):
        store.persist_balance_snapshot(EXCHANGE, _valuation(2.0), "BTC", "USDT", None, T0)
        store.persist_balance_snapshot(EXCHANGE, _valuation(1.0), "BTC", "USDT", None, T0 - timedelta(days=3))
        history = store.balance_history(EXCHANGE)
        assert [s.reference_balance for s in history] == [1.0, 2.0]
        recent = store.balance_history(EXCHANGE, since=T0 - timedelta(days=1))
        assert [s.reference_balance for s in recent] == [2.0]

    def test_latest_wallet_without_snapshot(self, store):
        assert store.latest_wallet_balances(EXCHANGE) == []
