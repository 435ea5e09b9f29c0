"""Snapshot persistence backends (local JSON file, Google Sheets)."""

from issuerelay.persistence.base import PersistenceAdapter, PersistenceError
from issuerelay.persistence.local import LocalFileAdapter
from issuerelay.persistence.sheets import SheetsAdapter

__all__ = ["LocalFileAdapter", "PersistenceAdapter", "PersistenceError", "SheetsAdapter"]
