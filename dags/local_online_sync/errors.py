from __future__ import annotations


class SyncError(Exception):
    """Base class for every failure raised by the sync engine."""


class DatabaseConnectionError(SyncError):
    """A database could not be reached (or its connection id is unknown)."""


class RegistryError(SyncError):
    """The table order configuration violates the dependency ordering."""


class SyncAlreadyRunningError(SyncError):
    """Another run already holds the same local/online connection pair."""


class StoreError(SyncError):
    """A statement failed on one of the databases."""

    def __init__(self, message: str, *, store: str | None = None, table: str | None = None):
        super().__init__(message)
        self.store = store
        self.table = table


class SchemaMismatchError(StoreError):
    """Target lacks a table/column present in the source, or types disagree."""


class DuplicateKeyError(StoreError):
    """A uniqueness constraint rejected an insert."""


class WriteError(StoreError):
    """Any other failure while reading, inserting, updating or flushing a batch."""
