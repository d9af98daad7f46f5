"""Market data caching and the daily upstream budget."""

from .budget import BudgetGuard, DailyBudget, ValkeyDailyBudget
from .client import ValkeyConnector
from .quote_cache import CacheEntry, QuoteCache


__all__ = [
    "BudgetGuard",
    "CacheEntry",
    "DailyBudget",
    "QuoteCache",
    "ValkeyConnector",
    "ValkeyDailyBudget",
]
