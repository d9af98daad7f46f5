"""Market data routes served through the cache/budget gateway."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from ipsagent.api.dependencies import get_container, get_gateway
from ipsagent.container import Container
from ipsagent.core.exceptions import ValidationError
from ipsagent.schemas.jobs import MAX_SYMBOLS
from ipsagent.schemas.market_data import QuotesResponse
from ipsagent.services.market_data import MarketDataGateway


router = APIRouter(prefix="/market-data", tags=["Market Data"])


def _parse_symbols(raw: str) -> list[str]:
    symbols: list[str] = []
    for part in raw.split(","):
        symbol = part.strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    return symbols


@router.get(
    "/quotes",
    response_model=QuotesResponse,
    summary="Get quotes",
    description="Cached quotes for a comma-separated symbol list with budget and rate-limit flags.",
)
async def get_quotes(
    response: Response,
    symbols: str = Query(..., min_length=1, description="Comma-separated symbols, e.g. AAPL,MSFT"),
    gateway: MarketDataGateway = Depends(get_gateway),
) -> QuotesResponse:
    parsed = _parse_symbols(symbols)
    if not parsed:
        raise ValidationError("No symbols given")
    if len(parsed) > MAX_SYMBOLS:
        raise ValidationError(
            f"Too many symbols (max {MAX_SYMBOLS})",
            details={"count": len(parsed), "max": MAX_SYMBOLS},
        )

    batch = await gateway.get_quotes(parsed)

    response.headers["X-Budget-Used"] = str(batch.budget_used)
    response.headers["X-Budget-Limit"] = str(batch.budget_limit)
    response.headers["X-Budget-Exceeded"] = str(batch.budget_exceeded).lower()
    response.headers["X-RateLimited"] = str(batch.rate_limited).lower()
    return QuotesResponse.from_batch(batch)


@router.get(
    "/stats",
    summary="Cache and budget statistics",
)
async def market_data_stats(
    container: Container = Depends(get_container),
) -> dict:
    return await container.gateway.get_stats()
