"""Wallet valuation in the reference currency.

Converts raw per-currency balances into reference-currency values using the
price resolver, and compares each holding's price with its average buy price.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable

from walletwatch.services.pricing import MarketSnapshot, resolve_price

# (reference, currency, quantity) -> average buy price, 0.0 when unknown
AveragePriceLookup = Callable[[str, str, float], float]


@dataclass
class HoldingValue:
    currency: str
    quantity: float
    price: float | None = 0.0
    reference_value: float | None = 0.0
    percentage_change: float = 0.0

    @property
    def is_priced(self) -> bool:
        return self.reference_value is not None


@dataclass
class Valuation:
    holdings: list[HoldingValue] = field(default_factory=list)
    total: float = 0.0

    @property
    def unpriced(self) -> list[str]:
        return [h.currency for h in self.holdings if not h.is_priced]


def price_difference(current: float | None, average: float) -> float:
    """Relative change of ``current`` against ``average``; 0 when either is unknown."""
    if current is None or average <= 0:
        return 0.0
    return (current - average) / average


def valuate(
    balances: Iterable[tuple[str, float]],
    snapshot: MarketSnapshot,
    average_buy_price: AveragePriceLookup,
    reference: str,
    fiat_proxy: str,
    via: str = "BTC",
) -> Valuation:
    """Value every non-zero balance in ``reference`` and sum the priced ones.

    Missing pairs are triangulated through ``via``. The fiat proxy holding is
    priced as ``reference``/``fiat_proxy`` (reference units per proxy unit), not
    the proxy/reference pair, so its value adds up with the other holdings.
    """
    valuation = Valuation()

    for currency, quantity in balances:
        if not quantity:
            continue

        if currency == reference:
            holding = HoldingValue(currency, quantity, price=0.0, reference_value=quantity)
        elif currency == fiat_proxy:
            # Proxy conversion, not a traded position: keep price at 0
            rate = resolve_price(snapshot, reference, fiat_proxy, via=via)
            holding = HoldingValue(
                currency,
                quantity,
                price=0.0,
                reference_value=quantity * rate if rate is not None else None,
            )
        else:
            price = resolve_price(snapshot, reference, currency, via=via)
            if price is None:
                holding = HoldingValue(currency, quantity, price=None, reference_value=None)
            else:
                average = average_buy_price(reference, currency, quantity)
                holding = HoldingValue(
                    currency,
                    quantity,
                    price=price,
                    reference_value=price * quantity,
                    percentage_change=price_difference(price, average),
                )

        valuation.holdings.append(holding)
        if holding.reference_value is not None:
            valuation.total += holding.reference_value

    return valuation
