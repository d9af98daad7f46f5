"""Tests for the Alpha Vantage client using httpx.MockTransport."""

from __future__ import annotations

from datetime import date

import httpx
import pytest
from conftest import FakeClock

from ipsagent.core.exceptions import UpstreamRateLimited, UpstreamUnavailable
from ipsagent.services.data_providers.alpha_vantage import (
    AlphaVantageClient,
    parse_global_quote,
    parse_option_contract,
)


GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "AAPL",
        "05. price": "190.5000",
        "08. previous close": "188.0000",
        "10. change percent": "1.3298%",
    }
}

OPTIONS = {
    "data": [
        {
            "contractID": "AAPL240517P00180000",
            "expiration": "2024-05-17",
            "strike": "180.00",
            "type": "put",
            "bid": "1.10",
            "ask": "1.20",
            "impliedVolatility": "0.25",
            "delta": "-0.22",
            "open_interest": "1500",
            "volume": "300",
        },
        {"contractID": "broken", "strike": "x"},
    ]
}


async def _no_sleep(_seconds: float) -> None:
    return None


def _client(handler, clock: FakeClock, **kwargs) -> tuple[AlphaVantageClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    client = AlphaVantageClient(
        "demo-key",
        base_url="https://av.test/query",
        http_client=http,
        clock=clock,
        retry_sleep=_no_sleep,
        **kwargs,
    )
    return client, requests


class TestParsing:
    def test_parse_global_quote(self, clock: FakeClock):
        """Price, previous close and percent change are parsed."""
        quote = parse_global_quote(GLOBAL_QUOTE, "AAPL", clock.now())

        assert quote.price == 190.5
        assert quote.previous_close == 188.0
        assert quote.change == pytest.approx(2.5)
        assert quote.change_percent == pytest.approx(1.3298)

    def test_parse_global_quote_missing_fields(self, clock: FakeClock):
        """An empty Global Quote gives None."""
        assert parse_global_quote({"Global Quote": {}}, "AAPL", clock.now()) is None

    def test_parse_option_contract(self):
        """Rows are normalized into contracts; bad rows are dropped."""
        contract = parse_option_contract(OPTIONS["data"][0], "AAPL")

        assert contract.expiry == date(2024, 5, 17)
        assert contract.option_type == "P"
        assert contract.mid == pytest.approx(1.15)
        assert contract.open_interest == 1500
        assert parse_option_contract(OPTIONS["data"][1], "AAPL") is None


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_quote_sends_function_and_key(self, clock: FakeClock):
        """GLOBAL_QUOTE is requested with the API key."""
        client, requests = _client(lambda r: httpx.Response(200, json=GLOBAL_QUOTE), clock)

        quote = await client.fetch_quote("AAPL")

        assert quote.symbol == "AAPL"
        assert requests[0].url.params["function"] == "GLOBAL_QUOTE"
        assert requests[0].url.params["apikey"] == "demo-key"

    @pytest.mark.asyncio
    async def test_fetch_options_chain(self, clock: FakeClock):
        """REALTIME_OPTIONS is requested with greeks; unusable rows are skipped."""
        client, requests = _client(lambda r: httpx.Response(200, json=OPTIONS), clock)

        chain = await client.fetch_options_chain("AAPL")

        assert len(chain.contracts) == 1
        assert requests[0].url.params["require_greeks"] == "true"

    @pytest.mark.asyncio
    async def test_entitlement_is_forwarded(self, clock: FakeClock):
        client, requests = _client(
            lambda r: httpx.Response(200, json=GLOBAL_QUOTE), clock, entitlement="delayed"
        )

        await client.fetch_quote("AAPL")
        assert requests[0].url.params["entitlement"] == "delayed"


class TestClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["Note", "Information"])
    async def test_notice_in_200_body_is_rate_limit(self, clock: FakeClock, field):
        """A Note/Information body is a rate limit and is not retried."""
        client, requests = _client(
            lambda r: httpx.Response(200, json={field: "Thank you for using Alpha Vantage!"}),
            clock,
        )

        with pytest.raises(UpstreamRateLimited) as exc_info:
            await client.fetch_quote("AAPL")

        assert exc_info.value.error_code == "RATE_LIMIT"
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limit(self, clock: FakeClock):
        client, _ = _client(lambda r: httpx.Response(429), clock)

        with pytest.raises(UpstreamRateLimited):
            await client.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_5xx_is_retried_then_unavailable(self, clock: FakeClock):
        """Server errors are retried up to max_attempts, then classified unavailable."""
        client, requests = _client(lambda r: httpx.Response(503), clock, max_attempts=3)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.fetch_quote("AAPL")

        assert exc_info.value.error_code == "FETCH_FAILED"
        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, clock: FakeClock):
        """A 500 followed by a good body succeeds."""
        responses = iter([httpx.Response(500), httpx.Response(200, json=GLOBAL_QUOTE)])
        client, requests = _client(lambda r: next(responses), clock)

        quote = await client.fetch_quote("AAPL")

        assert quote.price == 190.5
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_error_message_is_unavailable(self, clock: FakeClock):
        """An Error Message body is not retried."""
        client, requests = _client(
            lambda r: httpx.Response(200, json={"Error Message": "Invalid API call"}), clock
        )

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_quote("NOPE")
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, clock: FakeClock):
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, requests = _client(fail, clock, max_attempts=2)

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_quote("AAPL")
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, clock: FakeClock):
        """After repeated exhausted retries the breaker blocks further calls."""
        client, requests = _client(lambda r: httpx.Response(502), clock, max_attempts=1)
        client.breaker.failure_threshold = 2

        for _ in range(2):
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_quote("AAPL")
        calls_before = len(requests)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.fetch_quote("AAPL")

        assert len(requests) == calls_before
        assert exc_info.value.details == {"circuit": "alpha_vantage"}
