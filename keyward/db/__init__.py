"""Database connection management for the relational storage backend."""

from keyward.db.connection import close_pool, get_connection, get_pool

__all__ = ["close_pool", "get_connection", "get_pool"]
