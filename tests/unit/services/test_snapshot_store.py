"""Unit tests for baseline persistence."""

from pathlib import Path

import pytest

from reconciliation_service.exceptions import SnapshotError
from reconciliation_service.services.signature import SignatureComparator, signature
from reconciliation_service.services.snapshot_store import SnapshotStore, merge_baseline
from tests.fakes import make_entity


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "data")


def test_missing_baseline_is_none(store: SnapshotStore) -> None:
    assert store.load_baseline() is None
    assert store.baseline_saved_at() is None


def test_round_trip_preserves_signatures(store: SnapshotStore) -> None:
    entities = [make_entity("A"), make_entity("B", {"40 1/2": ("99.50", 1)})]
    assert store.save_baseline(entities) == 2

    loaded = store.load_baseline()
    assert [signature(e) for e in loaded] == [signature(e) for e in entities]
    assert store.baseline_saved_at() is not None
    assert not list(store.data_dir.glob("*.tmp"))


def test_corrupt_baseline_raises(store: SnapshotStore) -> None:
    store.data_dir.mkdir(parents=True)
    store.baseline_path.write_text("{not json")
    with pytest.raises(SnapshotError):
        store.load_baseline()


def test_save_diff(store: SnapshotStore) -> None:
    diff = SignatureComparator().diff([make_entity("NEW")], [make_entity("OLD")])
    store.save_diff(diff)

    saved = store.load_diff()
    assert saved["summary"] == {"new": 1, "updated": 0, "removed": 1, "unchanged": 0}
    assert saved["removed"][0]["variations"][0]["stock_quantity"] == 0


class TestMergeBaseline:
    def test_pending_keys_keep_previous_entry(self) -> None:
        previous = [make_entity("A", {"42": ("100", 1)}), make_entity("B")]
        current = [make_entity("A", {"42": ("200", 1)}), make_entity("B"), make_entity("C")]

        merged = {e.key: e for e in merge_baseline(previous, current, ["A", "C"])}

        assert merged["A"].variations[0].price == previous[0].variations[0].price
        assert "C" not in merged
        assert merged["B"] == current[1]

    def test_removed_pending_key_stays_in_baseline(self) -> None:
        previous = [make_entity("GONE")]
        assert [e.key for e in merge_baseline(previous, [], ["GONE"])] == ["GONE"]
        assert merge_baseline(previous, [], []) == []
