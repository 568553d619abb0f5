"""ccxt wrapper exposing the read-only calls an account cycle needs.

All ccxt failures and malformed rows surface as TransientFetchError; callers
never see partial data. Raw ccxt structures are converted to ActivityRecord /
MarketSnapshot here so the rest of the service stays venue-agnostic.
"""

import logging
from datetime import datetime, timezone

import ccxt.async_support as ccxt

from walletwatch.errors import TransientFetchError
from walletwatch.models.activity_record import ActivityRecord
from walletwatch.services.pricing import CurrencyPair, MarketSnapshot
from walletwatch.utils.constants import FEED_DEPOSITS, FEED_OPEN_ORDERS, FEED_TRADES, FEED_WITHDRAWALS

logger = logging.getLogger(__name__)


class ExchangeClient:
    """Read-only account access through ccxt's unified API."""

    def __init__(
        self,
        account_name: str,
        exchange_id: str,
        api_key: str,
        api_secret: str,
        api_password: str = "",
        timeout_ms: int = 15000,
        reference_currency: str = "BTC",
    ):
        if exchange_id not in ccxt.exchanges:
            raise ValueError(f"Unknown exchange id: {exchange_id}")
        self.account_name = account_name
        self.exchange_id = exchange_id
        self.reference_currency = reference_currency
        options = {
            "apiKey": api_key,
            "secret": api_secret,
            "timeout": timeout_ms,
            "enableRateLimit": True,
            "options": {"defaultType": "spot"},
        }
        if api_password:
            options["password"] = api_password
        self._exchange = getattr(ccxt, exchange_id)(options)

    async def _call(self, what: str, method, *args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except ccxt.BaseError as e:
            logger.warning(f"[{self.account_name}] {what} failed: {type(e).__name__}: {e}")
            raise TransientFetchError(f"{self.exchange_id} {what} failed: {e}") from e

    def _parse(self, what: str, parser, rows, *args) -> list[ActivityRecord]:
        """Convert raw ccxt rows; one malformed row fails the whole batch."""
        records = []
        for raw in rows or []:
            try:
                records.append(parser(raw, self.account_name, *args))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"[{self.account_name}] Malformed {what} record: {type(e).__name__}: {e}")
                raise TransientFetchError(f"{self.exchange_id} returned a malformed {what} record: {e}") from e
        return records

    async def test_connection(self) -> dict:
        """Check public and private API access."""
        try:
            await self._call("load_markets", self._exchange.load_markets)
            await self._call("fetch_balance", self._exchange.fetch_balance)
            return {"status": "ok", "exchange": self.exchange_id}
        except TransientFetchError as e:
            return {"status": "error", "message": str(e)}

    async def get_balances(self) -> list[tuple[str, float]]:
        raw = await self._call("fetch_balance", self._exchange.fetch_balance)
        return _parse_balances(raw)

    async def get_market_snapshot(self) -> MarketSnapshot:
        tickers = await self._call("fetch_tickers", self._exchange.fetch_tickers)
        return _parse_tickers(tickers)

    async def get_trades(self, since: datetime | None) -> list[ActivityRecord]:
        """Own trades since ``since`` (full history when None), oldest first."""
        since_ms = _to_ms(since)
        try:
            raw = await self._exchange.fetch_my_trades(None, since_ms)
        except ccxt.ArgumentsRequired:
            # Venue needs a symbol per call: walk the markets of currencies held
            raw = []
            for symbol in await self._held_symbols():
                raw.extend(await self._call(f"fetch_my_trades({symbol})", self._exchange.fetch_my_trades, symbol, since_ms))
        except ccxt.BaseError as e:
            logger.warning(f"[{self.account_name}] fetch_my_trades failed: {type(e).__name__}: {e}")
            raise TransientFetchError(f"{self.exchange_id} fetch_my_trades failed: {e}") from e
        records = self._parse("trade", _to_trade, raw)
        return sorted(records, key=lambda r: r.timestamp)

    async def get_open_orders(self) -> list[ActivityRecord]:
        try:
            raw = await self._exchange.fetch_open_orders()
        except ccxt.ArgumentsRequired:
            raw = []
            for symbol in await self._held_symbols():
                raw.extend(await self._call(f"fetch_open_orders({symbol})", self._exchange.fetch_open_orders, symbol))
        except ccxt.BaseError as e:
            logger.warning(f"[{self.account_name}] fetch_open_orders failed: {type(e).__name__}: {e}")
            raise TransientFetchError(f"{self.exchange_id} fetch_open_orders failed: {e}") from e
        return self._parse("open order", _to_open_order, raw)

    async def get_deposits_withdrawals(
        self, since: datetime | None
    ) -> tuple[list[ActivityRecord], list[ActivityRecord]]:
        since_ms = _to_ms(since)
        deposits = await self._call("fetch_deposits", self._exchange.fetch_deposits, None, since_ms)
        withdrawals = await self._call("fetch_withdrawals", self._exchange.fetch_withdrawals, None, since_ms)
        return (
            self._parse("deposit", _to_transfer, deposits, FEED_DEPOSITS),
            self._parse("withdrawal", _to_transfer, withdrawals, FEED_WITHDRAWALS),
        )

    async def _held_symbols(self) -> list[str]:
        """Spot symbols pairing each held currency with the reference currency."""
        markets = await self._call("load_markets", self._exchange.load_markets)
        balances = await self.get_balances()
        symbols = []
        for currency, _quantity in balances:
            if currency == self.reference_currency:
                continue
            for symbol in (f"{currency}/{self.reference_currency}", f"{self.reference_currency}/{currency}"):
                if symbol in markets:
                    symbols.append(symbol)
        return symbols

    async def close(self):
        """Close the underlying HTTP session."""
        await self._exchange.close()


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def _to_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_ms(value) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def _float(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _fee_cost(raw: dict) -> float:
    fee = raw.get("fee") or {}
    return _float(fee.get("cost"))


def _record_id(raw: dict, *keys: str, fallback: tuple[str, ...] = ()) -> str:
    """Exchange-assigned id, or a stable id built from ``fallback`` fields when none is given."""
    for key in ("id", *keys):
        value = raw.get(key)
        if value not in (None, ""):
            return str(value)
    if raw.get("timestamp") is None:
        raise ValueError("record has neither an id nor a timestamp")
    parts = [str(raw.get(name)) for name in ("timestamp", *fallback)]
    return "auto:" + ":".join(parts)


def _parse_balances(raw: dict) -> list[tuple[str, float]]:
    totals = raw.get("total") or {}
    return [(currency.upper(), _float(amount)) for currency, amount in totals.items() if _float(amount)]


def _parse_tickers(tickers: dict) -> MarketSnapshot:
    prices = {}
    for symbol, ticker in tickers.items():
        last = ticker.get("last")
        if last is None:
            last = ticker.get("close")
        if last is None:
            continue
        try:
            pair = CurrencyPair.from_symbol(symbol)
        except ValueError:
            continue
        prices[pair] = float(last)
    return MarketSnapshot(prices=prices)


def _to_trade(raw: dict, exchange: str) -> ActivityRecord:
    pair = CurrencyPair.from_symbol(raw["symbol"])
    price = _float(raw.get("price"))
    quantity = _float(raw.get("amount"))
    return ActivityRecord(
        exchange=exchange,
        feed=FEED_TRADES,
        record_id=_record_id(raw, fallback=("order", "symbol", "side", "amount", "price")),
        base=pair.base,
        terms=pair.terms,
        side=(raw.get("side") or "").lower(),
        quantity=quantity,
        price=price,
        fee=_fee_cost(raw),
        cost=_float(raw.get("cost")) or price * quantity,
        timestamp=_from_ms(raw.get("timestamp")),
    )


def _to_open_order(raw: dict, exchange: str) -> ActivityRecord:
    pair = CurrencyPair.from_symbol(raw["symbol"])
    return ActivityRecord(
        exchange=exchange,
        feed=FEED_OPEN_ORDERS,
        record_id=_record_id(raw, fallback=("symbol", "side", "amount", "price")),
        base=pair.base,
        terms=pair.terms,
        side=(raw.get("side") or "").lower(),
        quantity=_float(raw.get("amount")),
        price=_float(raw.get("price")),
        fee=_fee_cost(raw),
        cost=_float(raw.get("cost")),
        status=raw.get("status"),
        timestamp=_from_ms(raw.get("timestamp")),
    )


def _to_transfer(raw: dict, exchange: str, feed: str) -> ActivityRecord:
    return ActivityRecord(
        exchange=exchange,
        feed=feed,
        record_id=_record_id(raw, "txid", fallback=("currency", "amount", "address")),
        currency=(raw.get("currency") or "").upper(),
        side="deposit" if feed == FEED_DEPOSITS else "withdrawal",
        quantity=_float(raw.get("amount")),
        fee=_fee_cost(raw),
        address=raw.get("address"),
        status=raw.get("status"),
        timestamp=_from_ms(raw.get("timestamp")),
    )
