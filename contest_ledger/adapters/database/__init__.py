"""Database adapters: session management, entry persistence and the ledger store."""

from .ledger import LedgerStore
from .manager import DatabaseManager

__all__ = ["DatabaseManager", "LedgerStore"]
