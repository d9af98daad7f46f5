"""IPS agent: background option-trade analysis jobs."""

__version__ = "1.0.0"
