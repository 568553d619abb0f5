"""ActivityRecord model: immutable record of every trade, open order, deposit and withdrawal seen."""

from datetime import datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class ActivityRecord(SQLModel, table=True):
    __tablename__ = "activity_record"
    __table_args__ = (
        UniqueConstraint("exchange", "feed", "record_id", name="uq_activity_exchange_feed_record"),
    )

    id: int | None = Field(default=None, primary_key=True)
    exchange: str = Field(index=True)  # ExchangeAccount.name
    feed: str = Field(index=True)  # "trades", "open_orders", "deposits", "withdrawals"
    record_id: str  # exchange-assigned identifier

    # Market "ETH/BTC" is stored as base="BTC", terms="ETH"; price is terms priced in base
    base: str | None = None
    terms: str | None = None
    currency: str | None = None  # deposits and withdrawals

    side: str  # "buy", "sell", "deposit", "withdrawal"
    quantity: float = 0.0
    price: float = 0.0
    fee: float = 0.0
    cost: float = 0.0
    address: str | None = None
    status: str | None = None
    timestamp: datetime
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
