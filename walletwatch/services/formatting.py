"""Plain-text message formatting for Telegram notifications."""

from datetime import datetime

from walletwatch.models.activity_record import ActivityRecord
from walletwatch.services.valuation import Valuation
from walletwatch.utils.constants import FEED_DEPOSITS, FEED_OPEN_ORDERS, FEED_TRADES, FEED_WITHDRAWALS

_FEED_NOUNS = {
    FEED_TRADES: "trades",
    FEED_OPEN_ORDERS: "open orders",
    FEED_DEPOSITS: "deposits",
    FEED_WITHDRAWALS: "withdrawals",
}


def _num(value: float | None, places: int = 8) -> str:
    if value is None:
        return "n/a"
    text = f"{value:.{places}f}".rstrip("0").rstrip(".")
    return text or "0"


def _when(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M")


def suppression_reason(exchange: str, feed: str, count: int) -> str:
    noun = _FEED_NOUNS.get(feed, feed)
    return f"There are {count} new {exchange} {noun} to send. Not sending them to avoid spamming you."


def format_trade(record: ActivityRecord) -> str:
    lines = [
        _when(record.timestamp),
        f"New {record.exchange} trade",
        f"{record.side.upper()} {record.base}-{record.terms}",
        f"Quantity: {_num(record.quantity)}",
        f"Rate: {_num(record.price)} {record.base}",
        f"Total: {_num(record.cost or record.price * record.quantity)} {record.base}",
    ]
    if record.fee:
        lines.append(f"Fee: {_num(record.fee)}")
    return "\n".join(lines)


def format_open_order(record: ActivityRecord) -> str:
    return "\n".join([
        _when(record.timestamp),
        f"New {record.exchange} OPEN order",
        f"{record.side.upper()} {record.base}-{record.terms}",
        f"Price: {_num(record.price)}",
        f"Quantity: {_num(record.quantity)}",
    ])


def format_transfer(record: ActivityRecord) -> str:
    kind = "deposit" if record.feed == FEED_DEPOSITS else "withdrawal"
    lines = [
        _when(record.timestamp),
        f"New {record.exchange} {kind}",
        f"{_num(record.quantity)} {record.currency}",
    ]
    if record.address:
        lines.append(f"Address: {record.address}")
    if record.status:
        lines.append(f"Status: {record.status}")
    return "\n".join(lines)


def format_record(record: ActivityRecord) -> str:
    if record.feed == FEED_TRADES:
        return format_trade(record)
    if record.feed == FEED_OPEN_ORDERS:
        return format_open_order(record)
    return format_transfer(record)


def format_balance_report(
    exchange: str,
    valuation: Valuation,
    reference: str,
    fiat: str,
    fiat_total: float | None,
    previous_total: float | None,
    previous_fiat: float | None,
    period: str = "24h",
) -> str:
    """Balance summary with the change against an earlier snapshot."""
    lines = [f"{exchange} balance"]
    lines.append(f"Total: {_num(valuation.total)} {reference} ({_num(fiat_total, 2)} {fiat})")

    if previous_total:
        change = (valuation.total - previous_total) / previous_total
        lines.append(f"{period} change: {change:+.2%} {reference}")
    if previous_fiat and fiat_total is not None:
        change = (fiat_total - previous_fiat) / previous_fiat
        lines.append(f"{period} change: {change:+.2%} {fiat}")

    lines.append("")
    for holding in sorted(valuation.holdings, key=lambda h: h.reference_value or 0.0, reverse=True):
        if not holding.is_priced:
            lines.append(f"{holding.currency}: {_num(holding.quantity)} (unpriced)")
            continue
        line = f"{holding.currency}: {_num(holding.quantity)} = {_num(holding.reference_value)} {reference}"
        if holding.percentage_change:
            line += f" ({holding.percentage_change:+.2%} vs avg buy)"
        lines.append(line)

    return "\n".join(lines)


def format_balance_line(exchange: str, reference: str, total: float, fiat: str,
                        fiat_total: float | None, previous_total: float | None) -> str:
    """One-line balance summary used by the /balance command."""
    line = f"{exchange}: {_num(total)} {reference} ({_num(fiat_total, 2)} {fiat})"
    if previous_total:
        line += f" | 24h {(total - previous_total) / previous_total:+.2%}"
    return line
