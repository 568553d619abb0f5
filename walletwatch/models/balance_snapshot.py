"""BalanceSnapshot and WalletBalance models: append-only valuation history."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class BalanceSnapshot(SQLModel, table=True):
    __tablename__ = "balance_snapshot"

    id: int | None = Field(default=None, primary_key=True)
    exchange: str = Field(index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    reference_currency: str
    reference_balance: float
    fiat_currency: str
    fiat_balance: float | None = None  # None when the fiat hop could not be priced
    unpriced_currencies: str = ""  # comma separated


class WalletBalance(SQLModel, table=True):
    __tablename__ = "wallet_balance"

    id: int | None = Field(default=None, primary_key=True)
    snapshot_id: int | None = Field(default=None, foreign_key="balance_snapshot.id", index=True)
    exchange: str = Field(index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    currency: str
    quantity: float
    price: float | None = None
    reference_value: float | None = None
    percentage_change: float = 0.0
