"""Market data response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ipsagent.services.market_data import MarketDataBatch


class QuoteOut(BaseModel):
    symbol: str
    price: float
    previous_close: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    as_of: Optional[datetime] = None


class QuoteItem(BaseModel):
    """Outcome for one requested symbol."""

    symbol: str
    quote: Optional[QuoteOut] = None
    from_cache: bool = False
    tag: Optional[str] = Field(
        default=None,
        description="Why the value is stale or missing",
        examples=["served-stale:RATE_LIMIT", "no-data:budget-exceeded"],
    )


class MarketDataMeta(BaseModel):
    budget_used: int
    budget_limit: int
    budget_exceeded: bool
    rate_limited: bool


class QuotesResponse(BaseModel):
    """Gateway batch for ``GET /market-data/quotes``."""

    items: list[QuoteItem]
    meta: MarketDataMeta

    @classmethod
    def from_batch(cls, batch: MarketDataBatch) -> QuotesResponse:
        return cls(
            items=[
                QuoteItem(
                    symbol=item.symbol,
                    quote=QuoteOut.model_validate(item.data.to_dict()) if item.data else None,
                    from_cache=item.from_cache,
                    tag=item.tag,
                )
                for item in batch.items
            ],
            meta=MarketDataMeta(**batch.meta),
        )
