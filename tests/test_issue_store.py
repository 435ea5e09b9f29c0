"""Tests for IssueStore (ids, lifecycle, assignment, startup, write-through)."""

from typing import Callable

import pytest

from issuerelay.issue_store import IssueStore, PersistResult
from issuerelay.models import Issue, IssueValidationError, Snapshot
from tests.fakes import MemoryAdapter


@pytest.fixture
def remote() -> MemoryAdapter:
    return MemoryAdapter(name="remote")


@pytest.fixture
def local() -> MemoryAdapter:
    return MemoryAdapter(name="local")


@pytest.fixture
def store(local: MemoryAdapter, remote: MemoryAdapter, fixed_clock: Callable[[], str]) -> IssueStore:
    s = IssueStore(local=local, remote=remote, clock=fixed_clock)
    s.initialize()
    return s


class TestIds:
    """Id generation."""

    def test_ids_strictly_increase_and_never_repeat_across_deletes(self, store: IssueStore) -> None:
        """Deleting the newest issue does not free its id."""
        ids = [store.add("first").id, store.add("second").id]
        assert store.delete("2") is True
        ids.append(store.add("third").id)
        store.delete("1")
        ids.append(store.add("fourth").id)
        assert ids == ["1", "2", "3", "4"]
        assert store.next_id == 5

    def test_generate_id_returns_string_and_advances(self, store: IssueStore) -> None:
        """generate_id returns str(nextId) then increments."""
        assert store.generate_id() == "1"
        assert store.generate_id() == "2"
        assert store.next_id == 3


class TestLifecycle:
    """add / close / reopen / delete."""

    def test_add_creates_open_issue(self, store: IssueStore) -> None:
        """add puts the issue in open with creator and createdAt."""
        issue = store.add("  Fix login bug ", creator="u1")
        assert issue.id == "1"
        assert issue.title == "Fix login bug"
        assert issue.creator == "u1"
        assert issue.created_at == "2024-05-01T10:00:00+00:00"
        assert issue.assigned_ids == []
        assert [i.id for i in store.list_open()] == ["1"]
        assert store.list_closed() == []

    def test_close_then_reopen_restores_issue(self, store: IssueStore) -> None:
        """close followed by reopen clears the stamps and keeps other fields."""
        store.add("Write docs", creator="u1")
        store.assign("1", ["u2"])
        store.set_deadline("1", "2024-06-01")
        before = store.get("1")
        assert before is not None

        assert store.close("1", closed_by="u3") is True
        closed = store.list_closed()[0]
        assert closed.closed_at == "2024-05-01T10:00:00+00:00"
        assert closed.closed_by == "u3"
        assert store.list_open() == []

        assert store.reopen("1") is True
        after = store.get("1")
        assert after is not None
        assert after.closed_at is None
        assert after.closed_by is None
        assert after.model_dump() == before.model_dump()
        assert store.list_closed() == []

    def test_complete_is_close(self, store: IssueStore) -> None:
        """complete is an alias of close."""
        store.add("A")
        assert store.complete("1", "u1") is True
        assert store.list_closed()[0].closed_by == "u1"

    def test_close_unknown_or_already_closed_returns_false(self, store: IssueStore) -> None:
        """close only acts on open issues."""
        assert store.close("5") is False
        store.add("A")
        store.close("1")
        assert store.close("1") is False

    def test_reopen_requires_closed_issue(self, store: IssueStore) -> None:
        """reopen on an open issue is not found."""
        store.add("A")
        assert store.reopen("1") is False

    def test_delete_searches_open_then_closed(self, store: IssueStore) -> None:
        """delete removes from whichever set holds the issue."""
        store.add("A")
        store.add("B")
        store.close("2")
        assert store.delete("2") is True
        assert store.list_closed() == []
        assert store.delete("1") is True
        assert store.list_open() == []

    def test_delete_missing_on_empty_store(self, store: IssueStore, local: MemoryAdapter, remote: MemoryAdapter) -> None:
        """delete of an unknown id returns False and persists nothing."""
        assert store.delete("99") is False
        assert store.list_open() == [] and store.list_closed() == []
        assert local.saves == []
        assert remote.saves == []

    def test_get_returns_copy(self, store: IssueStore) -> None:
        """Mutating a returned issue does not touch store state."""
        store.add("A")
        issue = store.get("1")
        assert issue is not None
        issue.title = "changed"
        assert store.get("1").title == "A"


class TestAssignment:
    """assign / unassign / list_assigned_to."""

    def test_assign_is_set_union(self, store: IssueStore) -> None:
        """Re-assigning an existing participant is a no-op."""
        store.add("A")
        assert store.assign("1", ["a", "b"]) is True
        assert store.assign("1", ["b", "c"]) is True
        assert set(store.get("1").assigned_ids) == {"a", "b", "c"}
        assert len(store.get("1").assigned_ids) == 3

    def test_assign_unknown_or_closed_returns_false(self, store: IssueStore) -> None:
        """assign only targets open issues."""
        assert store.assign("1", ["a"]) is False
        store.add("A")
        store.close("1")
        assert store.assign("1", ["a"]) is False

    def test_assign_without_change_does_not_persist(self, store: IssueStore, remote: MemoryAdapter) -> None:
        """A pure no-op assignment skips the write."""
        store.add("A")
        store.assign("1", ["a"])
        saves = len(remote.saves)
        assert store.assign("1", ["a"]) is True
        assert len(remote.saves) == saves

    def test_unassign_all_is_idempotent(self, store: IssueStore) -> None:
        """Clearing an empty assignment set still succeeds."""
        store.add("A")
        store.assign("1", ["a", "b"])
        assert store.unassign_all("1") is True
        assert store.get("1").assigned_ids == []
        assert store.unassign_all("1") is True
        assert store.unassign_all("2") is False

    def test_unassign_some_removes_listed_only(self, store: IssueStore) -> None:
        """unassign_some keeps participants that were not listed."""
        store.add("A")
        store.assign("1", ["a", "b", "c"])
        assert store.unassign_some("1", ["a", "c", "zzz"]) is True
        assert store.get("1").assigned_ids == ["b"]

    def test_unassign_some_none_present_returns_false(self, store: IssueStore, remote: MemoryAdapter) -> None:
        """When none of the ids were assigned the call reports not found and writes nothing."""
        store.add("A")
        store.assign("1", ["a"])
        saves = len(remote.saves)
        assert store.unassign_some("1", ["x", "y"]) is False
        assert store.get("1").assigned_ids == ["a"]
        assert len(remote.saves) == saves

    def test_list_assigned_to_excludes_closed(self, store: IssueStore) -> None:
        """Closed issues are not listed even if the participant was assigned."""
        store.add("Fix login bug", creator="u1")
        store.add("Other")
        assert store.assign("1", ["u2"]) is True
        store.assign("2", ["u2"])
        assert store.complete("1", "u1") is True
        assert store.list_closed()[0].closed_at is not None
        assert [i.id for i in store.list_assigned_to("u2")] == ["2"]
        store.close("2")
        assert store.list_assigned_to("u2") == []


class TestUpdates:
    """update / set_deadline and validation."""

    def test_update_renames_open_issue(self, store: IssueStore) -> None:
        """update changes the title."""
        store.add("Old")
        assert store.update("1", "New") is True
        assert store.get("1").title == "New"
        assert store.update("7", "New") is False

    def test_set_and_clear_deadline(self, store: IssueStore) -> None:
        """Deadline is set, then cleared with None."""
        store.add("A")
        assert store.set_deadline("1", "2024-07-15") is True
        assert store.get("1").deadline == "2024-07-15"
        assert store.set_deadline("1", None) is True
        assert store.get("1").deadline is None

    def test_invalid_deadline_rejected_before_mutation(self, store: IssueStore) -> None:
        """Malformed dates raise and leave the issue unchanged."""
        store.add("A")
        with pytest.raises(IssueValidationError):
            store.set_deadline("1", "next week")
        assert store.get("1").deadline is None

    def test_empty_title_rejected(self, store: IssueStore, remote: MemoryAdapter) -> None:
        """add with a blank title raises and does not consume an id."""
        with pytest.raises(IssueValidationError):
            store.add("   ")
        assert store.next_id == 1
        assert remote.saves == []

    @pytest.mark.parametrize("bad_id", ["abc", "0", "-1", "", "1.5"])
    def test_non_numeric_id_rejected(self, store: IssueStore, bad_id: str) -> None:
        """Ids must be positive integers."""
        store.add("A")
        with pytest.raises(IssueValidationError):
            store.assign(bad_id, ["a"])
        assert store.get("1").assigned_ids == []

    def test_hash_prefixed_id_accepted(self, store: IssueStore) -> None:
        """'#1' is read as id 1."""
        store.add("A")
        assert store.close("#1") is True


class TestInitialize:
    """Startup reconciliation between remote and local backends."""

    def test_remote_data_is_adopted(self, fixed_clock: Callable[[], str]) -> None:
        """Remote data wins over local data."""
        remote = MemoryAdapter("remote", Snapshot(open=[Issue(id="4", title="remote")], next_id=5))
        local = MemoryAdapter("local", Snapshot(open=[Issue(id="1", title="local")], next_id=2))
        store = IssueStore(local=local, remote=remote, clock=fixed_clock)
        assert store.initialize() == "remote"
        assert [i.title for i in store.list_open()] == ["remote"]
        assert remote.saves == []

    def test_local_migrates_to_empty_remote(self) -> None:
        """Local data is pushed to a remote that has nothing yet."""
        remote = MemoryAdapter("remote", Snapshot.empty())
        local = MemoryAdapter(
            "local",
            Snapshot(open=[Issue(id="1", title="a")], closed=[Issue(id="2", title="b", closedAt="t")], next_id=3),
        )
        store = IssueStore(local=local, remote=remote)
        assert store.initialize() == "local"
        assert len(remote.saves) == 1
        migrated = remote.saves[0]
        assert [i.id for i in migrated.open] == ["1"]
        assert [i.id for i in migrated.closed] == ["2"]
        assert migrated.next_id == 3

    def test_migration_is_idempotent(self) -> None:
        """Running startup twice leaves the remote with the same content."""
        remote = MemoryAdapter("remote")
        local = MemoryAdapter("local", Snapshot(open=[Issue(id="1", title="a")]))
        IssueStore(local=local, remote=remote).initialize()
        first = remote.snapshot.to_payload()
        second_store = IssueStore(local=local, remote=remote)
        assert second_store.initialize() == "remote"
        assert remote.snapshot.to_payload() == first

    def test_remote_error_does_not_trigger_migration(self) -> None:
        """A failing remote read is not treated as empty."""
        remote = MemoryAdapter("remote", fail_load=True)
        local = MemoryAdapter("local", Snapshot(open=[Issue(id="1", title="a")]))
        store = IssueStore(local=local, remote=remote)
        assert store.initialize() == "local"
        assert remote.saves == []

    def test_unconfigured_remote_uses_local(self) -> None:
        """Without a remote the local file is the source."""
        local = MemoryAdapter("local", Snapshot(open=[Issue(id="3", title="a")]))
        store = IssueStore(local=local)
        assert store.initialize() == "local"
        assert store.next_id == 4

    def test_both_empty_starts_fresh(self) -> None:
        """No data anywhere gives an empty store with nextId 1."""
        store = IssueStore(local=MemoryAdapter("local"), remote=MemoryAdapter("remote"))
        assert store.initialize() == "empty"
        assert store.next_id == 1
        assert store.list_open() == []

    def test_next_id_keeps_highest_known_counter(self) -> None:
        """Remote rows cannot carry nextId; the local counter prevents id reuse."""
        remote = MemoryAdapter("remote", Snapshot(open=[Issue(id="2", title="a")]))
        local = MemoryAdapter("local", Snapshot(open=[Issue(id="2", title="a")], next_id=9))
        store = IssueStore(local=local, remote=remote)
        store.initialize()
        assert store.next_id == 9
        assert store.add("b").id == "9"

    def test_deadline_restored_from_local_when_remote_adopted(self) -> None:
        """Fields the spreadsheet cannot hold come back from the local file."""
        remote = MemoryAdapter("remote", Snapshot(open=[Issue(id="1", title="a")]))
        local = MemoryAdapter("local", Snapshot(open=[Issue(id="1", title="a", deadline="2024-09-01")]))
        store = IssueStore(local=local, remote=remote)
        store.initialize()
        assert store.get("1").deadline == "2024-09-01"

    @staticmethod
    def _remote_with_two() -> MemoryAdapter:
        return MemoryAdapter(
            "remote",
            Snapshot(
                open=[
                    Issue(id="1", title="one", createdAt="2024-01-01T00:00:00+00:00"),
                    Issue(id="2", title="two", createdAt="2024-01-02T00:00:00+00:00"),
                ],
                next_id=3,
            ),
            fail_load=True,
        )

    def test_unreadable_remote_is_not_overwritten(self, fixed_clock: Callable[[], str]) -> None:
        """While the remote cannot be read it is never written, so its rows survive."""
        remote = self._remote_with_two()
        store = IssueStore(local=MemoryAdapter("local"), remote=remote, clock=fixed_clock)
        assert store.initialize() == "empty"
        store.add("new")
        assert remote.saves == []
        assert store.last_persist.remote == "skipped"
        assert store.last_persist.local == "ok"
        assert [i.id for i in remote.snapshot.open] == ["1", "2"]

    def test_remote_read_after_recovery_keeps_ids_unique(self, fixed_clock: Callable[[], str]) -> None:
        """Once the remote answers, its issues are merged before a new id is handed out."""
        remote = self._remote_with_two()
        store = IssueStore(local=MemoryAdapter("local"), remote=remote, clock=fixed_clock)
        store.initialize()
        remote.fail_load = False
        issue = store.add("new")
        assert issue.id == "3"
        assert [i.id for i in remote.saves[-1].open] == ["1", "2", "3"]
        assert store.next_id == 4

    def test_issue_created_while_remote_down_is_renumbered_on_clash(self, fixed_clock: Callable[[], str]) -> None:
        """A local-only issue whose id the remote already uses gets a fresh id."""
        remote = self._remote_with_two()
        store = IssueStore(local=MemoryAdapter("local"), remote=remote, clock=fixed_clock)
        store.initialize()
        assert store.add("offline").id == "1"
        remote.fail_load = False
        assert store.add("online").id == "4"
        saved = remote.saves[-1]
        assert sorted((i.id, i.title) for i in saved.open) == [
            ("1", "one"),
            ("2", "two"),
            ("3", "offline"),
            ("4", "online"),
        ]

    def test_same_issue_on_both_sides_is_not_duplicated(self, fixed_clock: Callable[[], str]) -> None:
        """An issue known locally and remotely is kept once, with local edits."""
        remote = self._remote_with_two()
        local = MemoryAdapter(
            "local",
            Snapshot(open=[Issue(id="1", title="one", createdAt="2024-01-01T00:00:00+00:00")], next_id=2),
        )
        store = IssueStore(local=local, remote=remote, clock=fixed_clock)
        assert store.initialize() == "local"
        remote.fail_load = False
        assert store.update("1", "one, renamed") is True
        assert [(i.id, i.title) for i in store.list_open()] == [("1", "one, renamed"), ("2", "two")]
        assert store.next_id == 3


class TestPersist:
    """Write-through and failure isolation."""

    def test_every_mutation_writes_both_backends(self, store: IssueStore, local: MemoryAdapter, remote: MemoryAdapter) -> None:
        """Each successful mutation triggers exactly one save per backend."""
        store.add("A")
        store.assign("1", ["x"])
        store.update("1", "B")
        store.close("1")
        store.reopen("1")
        store.delete("1")
        assert len(remote.saves) == 6
        assert len(local.saves) == 6
        assert remote.saves[-1].open == [] and remote.saves[-1].next_id == 2

    def test_saved_snapshot_is_post_mutation_state(self, store: IssueStore, remote: MemoryAdapter) -> None:
        """The persisted snapshot already contains the mutation."""
        store.add("A")
        store.close("1", "u1")
        last = remote.saves[-1]
        assert last.open == []
        assert last.closed[0].closed_by == "u1"

    def test_remote_failure_still_writes_local(self, fixed_clock: Callable[[], str]) -> None:
        """A failing remote does not block or roll back the local write."""
        remote = MemoryAdapter("remote", fail_save=True)
        local = MemoryAdapter("local")
        store = IssueStore(local=local, remote=remote, clock=fixed_clock)
        store.initialize()
        issue = store.add("A")
        assert issue.id == "1"
        assert len(local.saves) == 1
        result = store.last_persist
        assert result is not None
        assert result.remote == "failed"
        assert result.local == "ok"
        assert "remote" in result.errors
        assert result.ok is False

    def test_both_failing_keeps_memory(self) -> None:
        """With every backend down, memory is still correct."""
        store = IssueStore(local=MemoryAdapter("local", fail_save=True), remote=MemoryAdapter("remote", fail_save=True))
        store.initialize()
        store.add("A")
        assert [i.title for i in store.list_open()] == ["A"]
        result = store.persist()
        assert result.remote == "failed" and result.local == "failed"

    def test_local_failure_still_writes_remote(self) -> None:
        """A failing local file degrades to remote-only."""
        remote = MemoryAdapter("remote")
        store = IssueStore(local=MemoryAdapter("local", fail_save=True), remote=remote)
        store.initialize()
        store.add("A")
        assert len(remote.saves) == 1
        assert store.last_persist.local == "failed"

    def test_persist_without_backends_is_skipped(self) -> None:
        """No adapters: persist reports skipped for both."""
        store = IssueStore()
        store.initialize()
        store.add("A")
        assert store.last_persist == PersistResult(remote="skipped", local="skipped")
        assert store.last_persist.ok is False

    def test_unexpected_adapter_exception_is_absorbed(self) -> None:
        """Non-PersistenceError exceptions from an adapter do not escape."""

        class Exploding(MemoryAdapter):
            def save(self, snapshot: Snapshot) -> None:
                raise RuntimeError("boom")

        store = IssueStore(remote=Exploding("remote"))
        store.initialize()
        store.add("A")
        assert store.last_persist.remote == "failed"
