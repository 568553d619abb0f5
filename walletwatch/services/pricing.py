"""Cross-pair price discovery over a point-in-time market snapshot.

Exchanges do not list every pair. Most altcoins only trade against one hub
currency (BTC on most venues), so a missing pair is recovered with at most
two O(1) lookups through that hub. All functions are pure: no I/O.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, NamedTuple


class CurrencyPair(NamedTuple):
    """Market pair. The price of a pair is one unit of ``terms`` expressed in ``base``."""

    base: str
    terms: str

    @classmethod
    def from_symbol(cls, symbol: str) -> "CurrencyPair":
        """Build a pair from a unified ``ASSET/QUOTE`` symbol (``ETH/BTC`` -> ``BTC``, ``ETH``)."""
        if not isinstance(symbol, str):
            raise ValueError(f"not a market symbol: {symbol!r}")
        asset, _, quote = symbol.partition("/")
        # Derivatives carry a settle suffix, e.g. "BTC/USDT:USDT"
        quote = quote.split(":", 1)[0]
        if not asset or not quote:
            raise ValueError(f"not a spot market symbol: {symbol!r}")
        return cls(base=quote.upper(), terms=asset.upper())

    def __str__(self) -> str:
        return f"{self.base}-{self.terms}"


@dataclass(frozen=True)
class MarketSnapshot:
    """Immutable mapping of pair -> last traded price."""

    prices: Mapping[CurrencyPair, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))

    @classmethod
    def from_items(cls, items: Iterable[tuple[CurrencyPair, float]]) -> "MarketSnapshot":
        return cls(prices=dict(items))

    def get(self, base: str, terms: str) -> float | None:
        return self.prices.get(CurrencyPair(base, terms))

    def __contains__(self, pair: object) -> bool:
        return pair in self.prices

    def __len__(self) -> int:
        return len(self.prices)


def resolve_price(snapshot: MarketSnapshot, base: str, terms: str, via: str) -> float | None:
    """Price of ``terms`` in ``base``, triangulating through ``via`` if needed.

    Returns None when no path exists. A market that legitimately trades at
    0.0 is returned as 0.0.
    """
    direct = snapshot.get(base, terms)
    if direct is not None:
        return direct

    inverse = snapshot.get(terms, base)
    if inverse:
        return 1.0 / inverse

    ref_terms = snapshot.get(via, terms)
    if ref_terms is None:
        return None

    ref_base = snapshot.get(via, base)
    if ref_base is not None:
        return ref_terms * ref_base

    base_ref = snapshot.get(base, via)
    if base_ref is not None:
        return base_ref * ref_terms

    return None


def to_fiat(
    snapshot: MarketSnapshot, amount: float, reference: str, fiat: str, via: str = "BTC"
) -> float | None:
    """Express a reference-currency amount in the fiat proxy, rounded to cents."""
    if reference == fiat:
        return round(amount, 2)
    price = resolve_price(snapshot, fiat, reference, via=via)
    if price is None:
        return None
    return round(price * amount, 2)
