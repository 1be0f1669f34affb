"""Tests for the metadata store.

The store keeps one record per synced path plus an optional conflict
record for paths waiting for manual resolution.
"""

import sqlite3
import threading
from pathlib import Path

import pytest

from vaultsync.client.state import (
    ConflictRecord,
    FileSyncRecord,
    MetadataStore,
    MetadataStoreError,
)


@pytest.fixture
def store(tmp_path: Path) -> MetadataStore:
    """Create a MetadataStore instance."""
    s = MetadataStore(tmp_path / "state.db")
    yield s
    s.close()


def make_conflict(path: str = "notes/a.md", created_at: float = 100.0) -> ConflictRecord:
    return ConflictRecord(
        path=path,
        backup_path=path.replace(".md", ".conflict-20250101-120000-000.md"),
        server_revision=5,
        local_hash="local",
        server_hash="server",
        created_at=created_at,
    )


class TestMetadataStoreCreation:
    """Tests for MetadataStore initialization."""

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Should create parent directories."""
        db_path = tmp_path / "subdir" / "nested" / "state.db"
        store = MetadataStore(db_path)

        assert db_path.exists()
        store.close()

    def test_reopens_existing_db(self, tmp_path: Path) -> None:
        """Should reopen existing database with data preserved."""
        db_path = tmp_path / "state.db"

        with MetadataStore(db_path) as store:
            store.upsert("a.md", revision=3)

        with MetadataStore(db_path) as store:
            record = store.get("a.md")
            assert record is not None
            assert record.revision == 3

    def test_corrupted_db_recovered_as_empty(self, tmp_path: Path) -> None:
        """Should move an unreadable database aside and start empty."""
        db_path = tmp_path / "state.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)

        with MetadataStore(db_path) as store:
            assert store.list_records() == []
            store.upsert("a.md", revision=1)
            assert store.get("a.md") is not None

        quarantined = list(tmp_path.glob("state.db.corrupt-*"))
        assert len(quarantined) == 1

    def test_locked_db_is_not_quarantined(self, tmp_path: Path) -> None:
        """Should raise on a locked database and keep its records."""
        db_path = tmp_path / "state.db"
        with MetadataStore(db_path) as store:
            store.upsert("a.md", revision=7)

        holder = sqlite3.connect(str(db_path), isolation_level=None)
        holder.execute("BEGIN EXCLUSIVE")
        try:
            with pytest.raises(MetadataStoreError, match="locked"):
                MetadataStore(db_path, timeout=0.1)
        finally:
            holder.execute("ROLLBACK")
            holder.close()

        assert list(tmp_path.glob("state.db.corrupt-*")) == []
        with MetadataStore(db_path) as store:
            record = store.get("a.md")
            assert record is not None
            assert record.revision == 7


class TestFileRecords:
    """Tests for per-path records."""

    def test_get_missing(self, store: MetadataStore) -> None:
        """Should return None for a path never synced."""
        assert store.get("missing.md") is None

    def test_upsert_creates_with_defaults(self, store: MetadataStore) -> None:
        """Should start a new record from zero defaults."""
        record = store.upsert("notes/a.md", revision=2, parent_revision=2)

        assert record == FileSyncRecord(path="notes/a.md", revision=2, parent_revision=2)
        assert store.get("notes/a.md") == record

    def test_upsert_merges_fields(self, store: MetadataStore) -> None:
        """Should keep fields not given in a later upsert."""
        store.upsert("a.md", content_hash="abc", revision=1, device_id="dev")
        store.upsert("a.md", revision=2, last_synced_at=123.5)

        record = store.get("a.md")
        assert record.content_hash == "abc"
        assert record.revision == 2
        assert record.last_synced_at == 123.5
        assert record.device_id == "dev"

    def test_upsert_unknown_field(self, store: MetadataStore) -> None:
        """Should reject unknown fields."""
        with pytest.raises(TypeError, match="bogus"):
            store.upsert("a.md", bogus=1)

    def test_delete(self, store: MetadataStore) -> None:
        """Should remove the record and any conflict record."""
        store.upsert("a.md", revision=1)
        store.add_conflict(make_conflict("a.md"))

        store.delete("a.md")

        assert store.get("a.md") is None
        assert store.get_conflict("a.md") is None

    def test_delete_missing_is_noop(self, store: MetadataStore) -> None:
        """Should not fail when deleting an unknown path."""
        store.delete("missing.md")

    def test_rename(self, store: MetadataStore) -> None:
        """Should move the record and keep every other field."""
        store.upsert("old.md", content_hash="h", revision=4, parent_revision=4)
        store.add_conflict(make_conflict("old.md"))

        store.rename("old.md", "new.md")

        assert store.get("old.md") is None
        record = store.get("new.md")
        assert record.content_hash == "h"
        assert record.revision == 4
        assert store.get_conflict("new.md") is not None
        assert store.get_conflict("old.md") is None

    def test_rename_replaces_target(self, store: MetadataStore) -> None:
        """Should overwrite a record already at the new path."""
        store.upsert("old.md", revision=4)
        store.upsert("new.md", revision=9)

        store.rename("old.md", "new.md")

        assert store.get("new.md").revision == 4
        assert [r.path for r in store.list_records()] == ["new.md"]

    def test_rename_missing_is_noop(self, store: MetadataStore) -> None:
        """Should leave the store untouched when the old path is unknown."""
        store.upsert("other.md", revision=1)

        store.rename("missing.md", "new.md")

        assert store.get("new.md") is None

    def test_list_records_sorted(self, store: MetadataStore) -> None:
        """Should list records ordered by path."""
        for path in ("b.md", "a.md", "c/d.md"):
            store.upsert(path, revision=1)

        assert [r.path for r in store.list_records()] == ["a.md", "b.md", "c/d.md"]

    def test_concurrent_upserts_keep_all_fields(self, store: MetadataStore) -> None:
        """Should not lose fields when two threads update the same path."""
        store.upsert("a.md")

        def set_hash() -> None:
            for _ in range(50):
                store.upsert("a.md", content_hash="h")

        def set_revision() -> None:
            for _ in range(50):
                store.upsert("a.md", revision=7)

        threads = [threading.Thread(target=set_hash), threading.Thread(target=set_revision)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        record = store.get("a.md")
        assert record.content_hash == "h"
        assert record.revision == 7


class TestConflictRecords:
    """Tests for the conflict sidecar."""

    def test_add_and_get(self, store: MetadataStore) -> None:
        """Should round-trip a conflict record."""
        conflict = make_conflict()
        store.add_conflict(conflict)

        assert store.get_conflict("notes/a.md") == conflict

    def test_list_oldest_first(self, store: MetadataStore) -> None:
        """Should list open conflicts by creation time."""
        store.add_conflict(make_conflict("b.md", created_at=200.0))
        store.add_conflict(make_conflict("a.md", created_at=300.0))
        store.add_conflict(make_conflict("c.md", created_at=100.0))

        assert [c.path for c in store.list_conflicts()] == ["c.md", "b.md", "a.md"]

    def test_clear(self, store: MetadataStore) -> None:
        """Should forget the conflict but keep the file record."""
        store.upsert("notes/a.md", revision=1)
        store.add_conflict(make_conflict())

        store.clear_conflict("notes/a.md")

        assert store.get_conflict("notes/a.md") is None
        assert store.get("notes/a.md") is not None
