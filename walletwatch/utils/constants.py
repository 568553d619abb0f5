"""Shared constants and defaults."""

VALID_INTERVALS = ["5m", "15m", "30m", "1h", "2h", "4h", "8h", "1d"]

# Interval to hours mapping for APScheduler
INTERVAL_HOURS: dict[str, float] = {
    "5m": 5 / 60,
    "15m": 0.25,
    "30m": 0.5,
    "1h": 1.0,
    "2h": 2.0,
    "4h": 4.0,
    "8h": 8.0,
    "1d": 24.0,
}

# Activity feeds, each tracked with its own checkpoint
FEED_TRADES = "trades"
FEED_OPEN_ORDERS = "open_orders"
FEED_DEPOSITS = "deposits"
FEED_WITHDRAWALS = "withdrawals"

FEEDS = (FEED_TRADES, FEED_OPEN_ORDERS, FEED_DEPOSITS, FEED_WITHDRAWALS)

SIDE_BUY = "buy"
SIDE_SELL = "sell"
