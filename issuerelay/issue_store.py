"""In-memory issue store with write-through to a remote and a local backend.

State lives in memory (open and closed lists plus the nextId counter). Every
mutation updates memory first and then writes the full snapshot to the remote
backend and, independently, to the local file. A failing backend is logged
and skipped; it never rolls back memory or blocks the other backend.

A remote that could not be read at startup is not written to until a later
read succeeds; that state is merged into memory first so ids are not reused
and the spreadsheet is not overwritten with a partial view.

Business misses (unknown id, nothing to unassign) are returned as False or
None. Malformed arguments raise IssueValidationError before anything changes.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Literal

from pydantic import BaseModel, Field

from issuerelay.models import (
    Issue,
    Snapshot,
    now_iso,
    validate_deadline,
    validate_issue_id,
    validate_title,
)
from issuerelay.persistence.base import PersistenceAdapter, PersistenceError

LOG = logging.getLogger("issuerelay.issue_store")

BackendOutcome = Literal["ok", "failed", "skipped"]
LoadState = Literal["unconfigured", "missing", "empty", "data", "error"]


class PersistResult(BaseModel):
    """Outcome of one persist() call, per backend."""

    remote: BackendOutcome = "skipped"
    local: BackendOutcome = "skipped"
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when nothing failed and at least one backend was written."""
        outcomes = (self.remote, self.local)
        return "failed" not in outcomes and "ok" in outcomes


class IssueStore:
    """Authoritative issue state for one process.

    Expected to be driven by a single logical writer; the re-entrant lock
    keeps read-modify-persist sequences from interleaving when the HTTP
    server and other threads share one instance.
    """

    def __init__(
        self,
        local: PersistenceAdapter | None = None,
        remote: PersistenceAdapter | None = None,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self._local = local
        self._remote = remote
        self._clock = clock
        self._open: List[Issue] = []
        self._closed: List[Issue] = []
        self._next_id = 1
        self._lock = threading.RLock()
        self._remote_synced = True
        self.last_persist: PersistResult | None = None

    @property
    def next_id(self) -> int:
        return self._next_id

    # --- startup ---

    def _load(self, adapter: PersistenceAdapter | None) -> tuple[LoadState, Snapshot | None]:
        if adapter is None:
            return "unconfigured", None
        try:
            snapshot = adapter.load()
        except PersistenceError as e:
            LOG.warning("Failed to load from %s backend: %s", adapter.name, e)
            return "error", None
        except Exception as e:
            LOG.exception("Unexpected error loading from %s backend: %s", adapter.name, e)
            return "error", None
        if snapshot is None:
            return "missing", None
        if snapshot.is_empty():
            return "empty", snapshot
        return "data", snapshot

    def _adopt(self, snapshot: Snapshot) -> None:
        self._open = [i.model_copy(deep=True) for i in snapshot.open]
        self._closed = [i.model_copy(deep=True) for i in snapshot.closed]
        self._next_id = snapshot.next_id

    def initialize(self) -> str:
        """Load state at startup. Returns the source used: remote, local or empty.

        Remote data wins. When the remote is missing or empty but the local
        file has issues, the local snapshot is pushed to the remote
        (one-way migration; safe to repeat since save overwrites fully).
        """
        with self._lock:
            remote_state, remote_snap = self._load(self._remote)
            local_state, local_snap = self._load(self._local)
            # High-water mark: ids are never reused, whichever backend remembers more
            floor = max(s.next_id for s in (remote_snap, local_snap, Snapshot.empty()) if s is not None)

            if remote_state == "data" and remote_snap is not None:
                self._adopt(remote_snap)
                if local_snap is not None:
                    self._restore_local_only_fields(local_snap)
                source = "remote"
            elif local_state == "data" and local_snap is not None:
                self._adopt(local_snap)
                source = "local"
                if remote_state in ("missing", "empty"):
                    self._migrate_to_remote(self._remote)
            else:
                self._adopt(Snapshot.empty())
                source = "empty"
            self._next_id = max(self._next_id, floor)
            self._remote_synced = remote_state != "error"
            if not self._remote_synced:
                LOG.warning("Remote backend unreadable, holding back remote writes until it can be read")

        LOG.info(
            "Issue store ready from %s: %s open, %s closed, nextId=%s",
            source,
            len(self._open),
            len(self._closed),
            self._next_id,
        )
        return source

    def _restore_local_only_fields(self, local_snap: Snapshot) -> None:
        # The spreadsheet has no deadline column; keep deadlines from the local file
        deadlines = {i.id: i.deadline for i in local_snap.open + local_snap.closed if i.deadline}
        for issue in self._open + self._closed:
            if issue.deadline is None and issue.id in deadlines:
                issue.deadline = deadlines[issue.id]

    def _migrate_to_remote(self, remote: PersistenceAdapter) -> None:
        LOG.info("Migrating %s local issues to %s backend", len(self._open) + len(self._closed), remote.name)
        outcome, error = self._save(remote, self.snapshot())
        if outcome == "failed":
            LOG.warning("Migration to %s failed: %s", remote.name, error)

    def _recover_remote(self) -> None:
        """Retry the startup read of a remote that failed, merging what it holds."""
        if self._remote_synced or self._remote is None:
            return
        state, remote_snap = self._load(self._remote)
        if state == "error":
            return
        if state == "data" and remote_snap is not None:
            self._merge_remote(remote_snap)
        self._remote_synced = True
        LOG.info("Remote %s backend readable again (nextId=%s)", self._remote.name, self._next_id)

    def _merge_remote(self, remote_snap: Snapshot) -> None:
        # Same id with the same creation time or title is the same issue and the
        # in-memory copy wins; any other id clash is a new issue and gets a fresh id
        mine = {i.id: i for i in self._open + self._closed}
        self._next_id = max(self._next_id, remote_snap.next_id)
        for partition, remote_issues in ((self._open, remote_snap.open), (self._closed, remote_snap.closed)):
            for theirs in remote_issues:
                ours = mine.get(theirs.id)
                if ours is not None and (ours.created_at == theirs.created_at or ours.title == theirs.title):
                    continue
                if ours is not None:
                    ours.id = self.generate_id()
                    mine[ours.id] = ours
                    LOG.warning("Issue #%s already exists remotely, local issue renumbered to #%s", theirs.id, ours.id)
                mine[theirs.id] = theirs
                partition.append(theirs.model_copy(deep=True))

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        with self._lock:
            self._recover_remote()
            yield

    # --- persistence ---

    def snapshot(self) -> Snapshot:
        """Deep copy of the current state."""
        with self._lock:
            return Snapshot(
                open=[i.model_copy(deep=True) for i in self._open],
                closed=[i.model_copy(deep=True) for i in self._closed],
                next_id=self._next_id,
            )

    def _save(self, adapter: PersistenceAdapter | None, snapshot: Snapshot) -> tuple[BackendOutcome, str | None]:
        if adapter is None:
            return "skipped", None
        try:
            adapter.save(snapshot)
        except PersistenceError as e:
            LOG.warning("Failed to save to %s backend: %s", adapter.name, e)
            return "failed", str(e)
        except Exception as e:
            LOG.exception("Unexpected error saving to %s backend: %s", adapter.name, e)
            return "failed", str(e)
        return "ok", None

    def persist(self) -> PersistResult:
        """Write the current snapshot to remote, then local. Never raises."""
        with self._lock:
            snapshot = self.snapshot()
            result = PersistResult()
            remote = self._remote if self._remote_synced else None
            result.remote, remote_error = self._save(remote, snapshot)
            result.local, local_error = self._save(self._local, snapshot)
            for name, error in (("remote", remote_error), ("local", local_error)):
                if error:
                    result.errors[name] = error
            if result.remote == "failed" and result.local == "failed":
                LOG.error("Issue state is not persisted: all backends failed")
            self.last_persist = result
            return result

    # --- ids and lookup ---

    def generate_id(self) -> str:
        """Return the next id and advance the counter."""
        with self._lock:
            issue_id = str(self._next_id)
            self._next_id += 1
            return issue_id

    @staticmethod
    def _index(collection: List[Issue], issue_id: str) -> int | None:
        for idx, issue in enumerate(collection):
            if issue.id == issue_id:
                return idx
        return None

    def _find_open(self, issue_id: str) -> Issue | None:
        idx = self._index(self._open, issue_id)
        return self._open[idx] if idx is not None else None

    def get(self, issue_id: str) -> Issue | None:
        """Return a copy of the issue from either set, or None."""
        issue_id = validate_issue_id(issue_id)
        with self._lock:
            for collection in (self._open, self._closed):
                idx = self._index(collection, issue_id)
                if idx is not None:
                    return collection[idx].model_copy(deep=True)
        return None

    def list_open(self) -> List[Issue]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._open]

    def list_closed(self) -> List[Issue]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._closed]

    def list_assigned_to(self, identifier: str) -> List[Issue]:
        """Open issues assigned to identifier. Closed issues are never listed."""
        with self._lock:
            return [i.model_copy(deep=True) for i in self._open if identifier in i.assigned_ids]

    # --- mutations ---

    def add(self, title: str, creator: str | None = None) -> Issue:
        """Create an open issue and return it."""
        title = validate_title(title)
        with self._mutation():
            issue = Issue(id=self.generate_id(), title=title, creator=creator or None, created_at=self._clock())
            self._open.append(issue)
            self.persist()
        LOG.info("Created issue #%s: %s", issue.id, issue.title)
        return issue.model_copy(deep=True)

    def delete(self, issue_id: str) -> bool:
        """Remove the issue from whichever set holds it (open first)."""
        issue_id = validate_issue_id(issue_id)
        with self._mutation():
            for collection in (self._open, self._closed):
                idx = self._index(collection, issue_id)
                if idx is not None:
                    del collection[idx]
                    self.persist()
                    LOG.info("Deleted issue #%s", issue_id)
                    return True
        return False

    def assign(self, issue_id: str, ids: Iterable[str]) -> bool:
        """Add participants to an open issue (set union)."""
        issue_id = validate_issue_id(issue_id)
        wanted = [str(i) for i in ids if i]
        with self._mutation():
            issue = self._find_open(issue_id)
            if issue is None:
                return False
            merged = list(dict.fromkeys(issue.assigned_ids + wanted))
            if merged != issue.assigned_ids:
                issue.assigned_ids = merged
                self.persist()
                LOG.info("Issue #%s assigned to %s", issue_id, ", ".join(merged))
        return True

    def unassign_all(self, issue_id: str) -> bool:
        """Clear all participants of an open issue. Succeeds even if none were set."""
        issue_id = validate_issue_id(issue_id)
        with self._mutation():
            issue = self._find_open(issue_id)
            if issue is None:
                return False
            if issue.assigned_ids:
                issue.assigned_ids = []
                self.persist()
                LOG.info("Issue #%s unassigned", issue_id)
        return True

    def unassign_some(self, issue_id: str, ids: Iterable[str]) -> bool:
        """Remove listed participants. False when the issue is not open or none were assigned."""
        issue_id = validate_issue_id(issue_id)
        removed = {str(i) for i in ids if i}
        with self._mutation():
            issue = self._find_open(issue_id)
            if issue is None:
                return False
            remaining = [a for a in issue.assigned_ids if a not in removed]
            if len(remaining) == len(issue.assigned_ids):
                return False
            issue.assigned_ids = remaining
            self.persist()
        LOG.info("Issue #%s: removed %s", issue_id, ", ".join(sorted(removed)))
        return True

    def update(self, issue_id: str, title: str) -> bool:
        """Rename an open issue."""
        issue_id = validate_issue_id(issue_id)
        title = validate_title(title)
        with self._mutation():
            issue = self._find_open(issue_id)
            if issue is None:
                return False
            if issue.title != title:
                issue.title = title
                self.persist()
        return True

    def set_deadline(self, issue_id: str, deadline: str | None) -> bool:
        """Set (ISO date) or clear (None) the deadline of an open issue."""
        issue_id = validate_issue_id(issue_id)
        value = validate_deadline(deadline) if deadline is not None else None
        with self._mutation():
            issue = self._find_open(issue_id)
            if issue is None:
                return False
            if issue.deadline != value:
                issue.deadline = value
                self.persist()
        return True

    def close(self, issue_id: str, closed_by: str | None = None) -> bool:
        """Move an open issue to closed, stamping closedAt and closedBy."""
        issue_id = validate_issue_id(issue_id)
        with self._mutation():
            idx = self._index(self._open, issue_id)
            if idx is None:
                return False
            issue = self._open.pop(idx)
            issue.closed_at = self._clock()
            issue.closed_by = closed_by or None
            self._closed.append(issue)
            self.persist()
        LOG.info("Closed issue #%s", issue_id)
        return True

    complete = close

    def reopen(self, issue_id: str) -> bool:
        """Move a closed issue back to open, clearing the closure stamps."""
        issue_id = validate_issue_id(issue_id)
        with self._mutation():
            idx = self._index(self._closed, issue_id)
            if idx is None:
                return False
            issue = self._closed.pop(idx)
            issue.closed_at = None
            issue.closed_by = None
            self._open.append(issue)
            self.persist()
        LOG.info("Reopened issue #%s", issue_id)
        return True
