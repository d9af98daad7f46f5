"""
Alpha Vantage market data client.

Alpha Vantage answers rate limits with HTTP 200 and a JSON body carrying a
``Note`` or ``Information`` field, so classification happens on the body as
well as the status code:

- ``Note`` / ``Information`` / HTTP 429 → ``UpstreamRateLimited`` (never retried)
- transport errors, HTTP 5xx, unparseable bodies → retried, then ``UpstreamUnavailable``
- ``Error Message`` / missing fields → ``UpstreamUnavailable``

Usage:
    client = AlphaVantageClient(api_key="...")
    quote = await client.fetch_quote("AAPL")
    chain = await client.fetch_options_chain("AAPL")
    await client.aclose()
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

import httpx

from ipsagent.core.clock import Clock, system_clock
from ipsagent.core.config import Settings
from ipsagent.core.exceptions import UpstreamRateLimited, UpstreamUnavailable
from ipsagent.core.logging import get_logger

from .models import OptionChain, OptionContract, QuoteSnapshot, _safe_float
from .resilience import (
    CircuitBreaker,
    CircuitOpenError,
    DEFAULT_RETRY_EXCEPTIONS,
    TransientUpstreamError,
    retrying,
)

logger = get_logger("data_providers.alpha_vantage")

DEFAULT_BASE_URL = "https://www.alphavantage.co/query"


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_global_quote(payload: dict[str, Any], symbol: str, as_of: datetime) -> QuoteSnapshot | None:
    """Build a quote from a GLOBAL_QUOTE body, or None if fields are unusable."""
    gq = payload.get("Global Quote")
    if not gq:
        return None

    price = _safe_float(gq.get("05. price"))
    prev_close = _safe_float(gq.get("08. previous close"))
    if price is None or prev_close is None:
        return None

    change = price - prev_close
    cp_str = str(gq.get("10. change percent") or "").strip()
    if cp_str.endswith("%"):
        change_percent = _safe_float(cp_str[:-1])
    else:
        change_percent = (change / prev_close) * 100 if prev_close else 0.0

    return QuoteSnapshot(
        symbol=symbol,
        price=price,
        previous_close=prev_close,
        change=change,
        change_percent=change_percent,
        as_of=as_of,
    )


def parse_option_contract(raw: dict[str, Any], symbol: str) -> OptionContract | None:
    """Normalize one REALTIME_OPTIONS row. Rows without an expiry are dropped."""
    expiry = _parse_date(raw.get("expiration"))
    strike = _safe_float(raw.get("strike"))
    if expiry is None or strike is None:
        return None

    return OptionContract(
        contract_id=str(raw.get("contractID") or raw.get("symbol") or symbol),
        expiry=expiry,
        strike=strike,
        option_type="P" if str(raw.get("type", "")).upper() == "PUT" else "C",
        bid=_safe_float(raw.get("bid")),
        ask=_safe_float(raw.get("ask")),
        last=_safe_float(raw.get("last")),
        iv=_safe_float(raw.get("impliedVolatility") or raw.get("implied_volatility")),
        delta=_safe_float(raw.get("delta")),
        gamma=_safe_float(raw.get("gamma")),
        theta=_safe_float(raw.get("theta")),
        vega=_safe_float(raw.get("vega")),
        open_interest=_safe_float(raw.get("open_interest") or raw.get("openInterest")),
        volume=_safe_float(raw.get("volume")),
    )


class AlphaVantageClient:
    """Async Alpha Vantage client implementing ``MarketDataProvider``."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        entitlement: str | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        http_client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
        clock: Clock = system_clock,
        retry_sleep: Any = None,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._entitlement = entitlement
        self._max_attempts = max_attempts
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._clock = clock
        self._retry_sleep = retry_sleep
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name="alpha_vantage",
            excluded_exceptions=(UpstreamRateLimited,),
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> AlphaVantageClient:
        return cls(
            settings.alpha_vantage_api_key,
            base_url=settings.alpha_vantage_base_url,
            entitlement=settings.alpha_vantage_entitlement,
            timeout=float(settings.external_api_timeout),
            max_attempts=settings.external_api_retries,
            **kwargs,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _get_once(self, params: dict[str, str]) -> dict[str, Any]:
        response = await self._client.get(self._base_url, params=params)

        if response.status_code == 429:
            raise UpstreamRateLimited(details={"status": 429})
        if response.status_code >= 500:
            raise TransientUpstreamError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                f"HTTP {response.status_code}", details={"status": response.status_code}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientUpstreamError(f"Invalid JSON body: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamUnavailable("Unexpected response shape")
        # 200 OK with a quota notice
        if payload.get("Note"):
            raise UpstreamRateLimited(f"Alpha Vantage rate limit: {payload['Note']}")
        if payload.get("Information"):
            raise UpstreamRateLimited(f"Alpha Vantage info: {payload['Information']}")
        if payload.get("Error Message"):
            raise UpstreamUnavailable(str(payload["Error Message"]))
        return payload

    async def _request(self, function: str, symbol: str, **extra: str) -> dict[str, Any]:
        params = {"function": function, "symbol": symbol, "apikey": self._api_key, **extra}
        if self._entitlement:
            params["entitlement"] = self._entitlement

        try:
            await self.breaker.guard()
        except CircuitOpenError as e:
            raise UpstreamUnavailable(str(e), details={"circuit": self.breaker.name}) from e

        try:
            async for attempt in retrying(
                max_attempts=self._max_attempts, sleep=self._retry_sleep
            ):
                with attempt:
                    payload = await self._get_once(params)
        except UpstreamRateLimited:
            raise
        except DEFAULT_RETRY_EXCEPTIONS as e:
            self.breaker.record_failure(e)
            logger.warning(f"{function} failed for {symbol} after retries: {e}")
            raise UpstreamUnavailable(
                f"{function} failed for {symbol}: {e}", details={"symbol": symbol}
            ) from e

        self.breaker.record_success()
        return payload

    # =========================================================================
    # Public API
    # =========================================================================

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        """Fetch the latest GLOBAL_QUOTE for ``symbol``."""
        payload = await self._request("GLOBAL_QUOTE", symbol)
        quote = parse_global_quote(payload, symbol, self._clock.now())
        if quote is None:
            raise UpstreamUnavailable(f"No usable data for {symbol}", details={"symbol": symbol})
        return quote

    async def fetch_options_chain(self, symbol: str) -> OptionChain:
        """Fetch the full options chain with greeks for ``symbol``."""
        payload = await self._request("REALTIME_OPTIONS", symbol, require_greeks="true")
        rows = payload.get("data")
        if not isinstance(rows, list):
            raise UpstreamUnavailable(f"No options data for {symbol}", details={"symbol": symbol})

        contracts = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            contract = parse_option_contract(row, symbol)
            if contract is not None:
                contracts.append(contract)

        logger.debug(f"Parsed {len(contracts)}/{len(rows)} contracts for {symbol}")
        return OptionChain(symbol=symbol, as_of=self._clock.now(), contracts=tuple(contracts))
