"""Market data value types returned by providers and cached by the gateway."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Optional, Protocol


OptionType = Literal["P", "C"]


def _safe_float(value: Any) -> Optional[float]:
    """Safely convert value to float."""
    if value is None or value == "":
        return None
    try:
        f = float(value)
        if f != f or f == float("inf") or f == float("-inf"):
            return None
        return f
    except (ValueError, TypeError):
        return None


@dataclass(frozen=True)
class QuoteSnapshot:
    """Latest quote for one symbol."""

    symbol: str
    price: float
    previous_close: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    as_of: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["as_of"] = self.as_of.isoformat() if self.as_of else None
        return data


@dataclass(frozen=True)
class OptionContract:
    """One option contract with greeks as reported by the provider."""

    contract_id: str
    expiry: date
    strike: float
    option_type: OptionType
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None
    iv: Optional[float] = None
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    open_interest: Optional[float] = None
    volume: Optional[float] = None

    @property
    def mid(self) -> Optional[float]:
        if self.bid is None or self.ask is None:
            return None
        return (self.bid + self.ask) / 2

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["expiry"] = self.expiry.isoformat()
        return data


@dataclass(frozen=True)
class OptionChain:
    """All contracts for a symbol at a point in time."""

    symbol: str
    as_of: datetime
    contracts: tuple[OptionContract, ...] = field(default_factory=tuple)

    def expiries(self) -> list[date]:
        return sorted({c.expiry for c in self.contracts})

    def puts(self, expiry: date | None = None) -> list[OptionContract]:
        return [
            c
            for c in self.contracts
            if c.option_type == "P" and (expiry is None or c.expiry == expiry)
        ]

    def calls(self, expiry: date | None = None) -> list[OptionContract]:
        return [
            c
            for c in self.contracts
            if c.option_type == "C" and (expiry is None or c.expiry == expiry)
        ]


class MarketDataProvider(Protocol):
    """Upstream fetcher contract.

    Implementations raise ``UpstreamRateLimited`` or ``UpstreamUnavailable``.
    """

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot: ...

    async def fetch_options_chain(self, symbol: str) -> OptionChain: ...
