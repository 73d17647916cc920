"""Ledger persistence."""

from .ledger_db import LedgerDatabase, get_database

__all__ = ["LedgerDatabase", "get_database"]
