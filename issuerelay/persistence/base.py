"""Abstract base for snapshot persistence backends."""

from abc import ABC, abstractmethod

from issuerelay.models import Snapshot


class PersistenceError(Exception):
    """Raised when a backend read or write fails."""

    pass


class PersistenceAdapter(ABC):
    """Reads and writes the full {open, closed, nextId} snapshot.

    Backends never patch incrementally: save() replaces the whole dataset.
    """

    name: str = "backend"

    @abstractmethod
    def load(self) -> Snapshot | None:
        """Return the stored snapshot, or None when the target does not exist.

        Raises PersistenceError when the target exists but cannot be read.
        """
        ...

    @abstractmethod
    def save(self, snapshot: Snapshot) -> None:
        """Overwrite the stored dataset with snapshot.

        Raises PersistenceError on failure.
        """
        ...
