"""ExchangeAccount model: one polled exchange account and its notification flags."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class ExchangeAccount(SQLModel, table=True):
    __tablename__ = "exchange_account"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)  # exchange identifier used for checkpoints and records
    exchange_id: str  # ccxt exchange id, e.g. "binance", "poloniex"

    # Fernet-encrypted credentials
    api_key_encrypted: str = ""
    api_secret_encrypted: str = ""
    api_password_encrypted: str = ""  # some venues (OKX, KuCoin) require a passphrase

    # Notifications
    buy_notifications: bool = True
    sell_notifications: bool = True
    open_order_notifications: bool = False
    deposit_notifications: bool = True
    withdrawal_notifications: bool = True
    balance_notifications: bool = False

    # Scheduling
    schedule_interval: str = "1h"
    is_enabled: bool = True

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
