"""Tests for the TTL quote cache."""

from __future__ import annotations

from conftest import FakeClock

from ipsagent.cache.quote_cache import QuoteCache
from ipsagent.services.data_providers.models import QuoteSnapshot


TTL = 3 * 60 * 60


def _quote(symbol: str = "AAPL", price: float = 190.0) -> QuoteSnapshot:
    return QuoteSnapshot(symbol=symbol, price=price)


class TestFreshness:
    """get() only returns entries inside the freshness window."""

    def test_get_within_ttl(self, clock: FakeClock):
        """A value set now is returned until the TTL elapses."""
        cache = QuoteCache(TTL, clock=clock)
        cache.set("AAPL", _quote())

        clock.advance(TTL - 1)
        assert cache.get("AAPL") == _quote()

    def test_get_exactly_at_ttl_is_fresh(self, clock: FakeClock):
        """Age equal to the TTL still counts as fresh."""
        cache = QuoteCache(TTL, clock=clock)
        cache.set("AAPL", _quote())

        clock.advance(TTL)
        assert cache.get("AAPL") is not None

    def test_get_past_ttl_returns_none(self, clock: FakeClock):
        """One second past the TTL the entry is no longer fresh."""
        cache = QuoteCache(TTL, clock=clock)
        cache.set("AAPL", _quote())

        clock.advance(TTL + 1)
        assert cache.get("AAPL") is None

    def test_missing_symbol(self, clock: FakeClock):
        """Unknown symbols miss."""
        cache = QuoteCache(TTL, clock=clock)
        assert cache.get("MSFT") is None
        assert cache.get_stale("MSFT") is None

    def test_set_restarts_window(self, clock: FakeClock):
        """Overwriting an entry restarts its freshness window."""
        cache = QuoteCache(TTL, clock=clock)
        cache.set("AAPL", _quote(price=1.0))
        clock.advance(TTL - 10)
        cache.set("AAPL", _quote(price=2.0))
        clock.advance(TTL - 10)

        assert cache.get("AAPL").price == 2.0


class TestStale:
    """get_stale() ignores age."""

    def test_stale_value_survives_ttl(self, clock: FakeClock):
        """The last known value is available long after expiry."""
        cache = QuoteCache(TTL, clock=clock)
        cache.set("AAPL", _quote())

        clock.advance(TTL * 10)
        assert cache.get("AAPL") is None
        assert cache.get_stale("AAPL") == _quote()

    def test_keys_are_case_insensitive(self, clock: FakeClock):
        """Symbols are stored upper-cased."""
        cache = QuoteCache(TTL, clock=clock)
        cache.set(" aapl ", _quote())

        assert cache.get("AAPL") is not None
        assert cache.get_entry("aapl").updated_at == clock.now()


class TestStats:
    def test_stats_split_fresh_and_stale(self, clock: FakeClock):
        """Stats count fresh and stale entries separately."""
        cache = QuoteCache(TTL, clock=clock, name="quotes")
        cache.set("OLD", _quote("OLD"))
        clock.advance(TTL + 1)
        cache.set("NEW", _quote("NEW"))

        stats = cache.get_stats()
        assert stats == {
            "name": "quotes",
            "entries": 2,
            "fresh": 1,
            "stale": 1,
            "ttl_seconds": TTL,
        }
        assert len(cache) == 2
