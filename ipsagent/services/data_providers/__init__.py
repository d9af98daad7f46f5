"""Data providers - centralized external API access."""

from .alpha_vantage import AlphaVantageClient
from .batching import run_in_batches
from .models import MarketDataProvider, OptionChain, OptionContract, QuoteSnapshot
from .resilience import CircuitBreaker, CircuitOpenError, CircuitState


__all__ = [
    "AlphaVantageClient",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "MarketDataProvider",
    "OptionChain",
    "OptionContract",
    "QuoteSnapshot",
    "run_in_batches",
]
