"""HTTP API routers."""

from cuehall.api import payments, sessions, tables, users, venues

__all__ = ["payments", "sessions", "tables", "users", "venues"]
