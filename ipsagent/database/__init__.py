"""Database connection and ORM models."""

from .connection import (
    close_sqlalchemy_engine,
    database_healthcheck,
    get_async_database_url,
    get_session,
    init_sqlalchemy_engine,
)


__all__ = [
    "close_sqlalchemy_engine",
    "database_healthcheck",
    "get_async_database_url",
    "get_session",
    "init_sqlalchemy_engine",
]
