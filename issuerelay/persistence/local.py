"""Local durable file backend: one JSON document holding the whole snapshot."""

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from issuerelay.models import Snapshot
from issuerelay.persistence.base import PersistenceAdapter, PersistenceError

LOG = logging.getLogger("issuerelay.persistence.local")


class LocalFileAdapter(PersistenceAdapter):
    """Snapshot stored in a JSON file (default data/issues.json)."""

    name = "local"

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Snapshot | None:
        """Read the file. Missing file is not an error (returns None)."""
        if not self._path.is_file():
            LOG.debug("No local snapshot at %s", self._path)
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "null")
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read {self._path}: {e}") from e
        if raw is None:
            return None
        try:
            snapshot = Snapshot.model_validate(raw)
        except ValidationError as e:
            raise PersistenceError(f"Invalid snapshot in {self._path}: {e}") from e
        LOG.info(
            "Loaded %s open and %s closed issues from %s",
            len(snapshot.open),
            len(snapshot.closed),
            self._path,
        )
        return snapshot

    def save(self, snapshot: Snapshot) -> None:
        """Write the snapshot via a temp file and rename."""
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot.to_payload(), indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {self._path}: {e}") from e
        LOG.debug("Saved snapshot to %s (nextId=%s)", self._path, snapshot.next_id)
