"""API route modules."""

from . import health, jobs, market_data


__all__ = ["health", "jobs", "market_data"]
