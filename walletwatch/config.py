"""Application configuration via environment variables."""

from dataclasses import dataclass, field
from datetime import timedelta

from pydantic_settings import BaseSettings

from walletwatch.errors import ConfigurationError
from walletwatch.utils.constants import FEED_DEPOSITS, FEED_OPEN_ORDERS, FEED_TRADES, FEED_WITHDRAWALS


class Settings(BaseSettings):
    database_url: str = "sqlite:///./walletwatch.db"
    encryption_key: str = ""  # Fernet key; generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Bearer token for the admin API; empty disables every protected route
    api_token: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    # Valuation
    reference_currency: str = "BTC"
    fiat_currency: str = "USDT"  # stable coin used as the fiat hop
    triangulation_currency: str = "BTC"  # hub for pairs the venue does not list
    balance_lookback_hours: float = 24.0

    # Notification caps per feed; above the cap a single summary is sent
    trade_notification_limit: int = 30
    open_order_notification_limit: int = 5
    deposit_notification_limit: int = 10
    withdrawal_notification_limit: int = 10

    # Polling
    refetch_overlap_hours: float = 48.0
    fetch_timeout_seconds: float = 30.0
    exchange_timeout_ms: int = 15000
    default_schedule_interval: str = "1h"

    model_config = {"env_prefix": "WW_", "env_file": ".env"}


settings = Settings()


def check_settings(cfg: Settings) -> None:
    """Fail fast on configuration the service cannot run without."""
    if not cfg.reference_currency.strip():
        raise ConfigurationError("WW_REFERENCE_CURRENCY must not be empty")
    if not cfg.fiat_currency.strip():
        raise ConfigurationError("WW_FIAT_CURRENCY must not be empty")
    if not cfg.triangulation_currency.strip():
        raise ConfigurationError("WW_TRIANGULATION_CURRENCY must not be empty")
    if not cfg.encryption_key:
        raise ConfigurationError(
            "WW_ENCRYPTION_KEY not set; exchange credentials cannot be decrypted"
        )
    for name in (
        "trade_notification_limit",
        "open_order_notification_limit",
        "deposit_notification_limit",
        "withdrawal_notification_limit",
    ):
        if getattr(cfg, name) < 0:
            raise ConfigurationError(f"{name} must be >= 0")


@dataclass(frozen=True)
class CycleConfig:
    """Read-only view of the configuration one account cycle runs with."""

    exchange: str
    reference_currency: str
    fiat_currency: str
    notification_limits: dict[str, int]
    notification_flags: dict[str, bool]
    balance_notifications: bool = False
    triangulation_currency: str = "BTC"
    refetch_overlap: timedelta = timedelta(hours=48)
    balance_lookback: timedelta = timedelta(hours=24)
    fetch_timeout: float = 30.0
    enabled_feeds: tuple[str, ...] = field(
        default=(FEED_TRADES, FEED_OPEN_ORDERS, FEED_DEPOSITS, FEED_WITHDRAWALS)
    )


def build_cycle_config(account, cfg: Settings | None = None) -> CycleConfig:
    """Freeze the global settings and one account's flags for a single cycle."""
    cfg = cfg or settings
    flags = {
        "buy": account.buy_notifications,
        "sell": account.sell_notifications,
        FEED_OPEN_ORDERS: account.open_order_notifications,
        FEED_DEPOSITS: account.deposit_notifications,
        FEED_WITHDRAWALS: account.withdrawal_notifications,
    }
    limits = {
        FEED_TRADES: cfg.trade_notification_limit,
        FEED_OPEN_ORDERS: cfg.open_order_notification_limit,
        FEED_DEPOSITS: cfg.deposit_notification_limit,
        FEED_WITHDRAWALS: cfg.withdrawal_notification_limit,
    }
    return CycleConfig(
        exchange=account.name,
        reference_currency=cfg.reference_currency.upper(),
        fiat_currency=cfg.fiat_currency.upper(),
        triangulation_currency=cfg.triangulation_currency.upper(),
        notification_limits=limits,
        notification_flags=flags,
        balance_notifications=account.balance_notifications,
        refetch_overlap=timedelta(hours=cfg.refetch_overlap_hours),
        balance_lookback=timedelta(hours=cfg.balance_lookback_hours),
        fetch_timeout=cfg.fetch_timeout_seconds,
    )
