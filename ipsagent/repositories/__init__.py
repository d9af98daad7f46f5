"""Persistence for jobs and trade candidates.

The SQL implementations live in ``*_orm`` modules and are imported lazily by
the container so the in-memory backends work without a database driver.
"""

from .candidates import CandidateRepository, InMemoryCandidateRepository


__all__ = ["CandidateRepository", "InMemoryCandidateRepository"]
