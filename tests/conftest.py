from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import walletwatch.models  # noqa: F401  (populates SQLModel.metadata)
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.services.store import Store
from walletwatch.utils.constants import FEED_DEPOSITS, FEED_TRADES

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def store(engine) -> Store:
    return Store(engine)


def _trade(record_id, side="buy", quantity=1.0, price=0.05, timestamp=T0,
           exchange="binance-main", base="BTC", terms="ETH") -> ActivityRecord:
    return ActivityRecord(
        exchange=exchange,
        feed=FEED_TRADES,
        record_id=str(record_id),
        base=base,
        terms=terms,
        side=side,
        quantity=quantity,
        price=price,
        cost=quantity * price,
        timestamp=timestamp,
    )


def _transfer(record_id, feed=FEED_DEPOSITS, currency="BTC", quantity=0.5,
              timestamp=T0, exchange="binance-main") -> ActivityRecord:
    return ActivityRecord(
        exchange=exchange,
        feed=feed,
        record_id=str(record_id),
        currency=currency,
        side="deposit" if feed == FEED_DEPOSITS else "withdrawal",
        quantity=quantity,
        timestamp=timestamp,
    )


@pytest.fixture
def make_trade():
    return _trade


@pytest.fixture
def make_transfer():
    return _transfer
