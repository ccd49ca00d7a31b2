import json
from pathlib import Path

import pytest

from docindex.services.index.manifest import ManifestTracker
from docindex.services.index.types import ManifestEntry, SourceDocument


def _doc(name: str, signature: str) -> SourceDocument:
    return SourceDocument(filename=name, path=Path(name), signature=signature)


def test_missing_manifest_means_everything_changed(tmp_path: Path) -> None:
    tracker = ManifestTracker(tmp_path / "manifest.json")
    tracker.load()

    documents = [_doc("a.pdf", "s1"), _doc("b.pdf", "s2")]

    assert tracker.change_set(documents) == documents
    assert tracker.vector_store_id is None


def test_change_set_contains_new_and_modified_documents(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text(
        json.dumps(
            {
                "vectorStoreId": "vs_1",
                "files": {
                    "a.pdf": {"sig": "s1", "remoteFileId": "file-a"},
                    "b.pdf": {"sig": "old", "remoteFileId": "file-b"},
                },
            }
        ),
        encoding="utf-8",
    )
    tracker = ManifestTracker(path)
    tracker.load()

    changed = tracker.change_set([_doc("a.pdf", "s1"), _doc("b.pdf", "new"), _doc("c.pdf", "s3")])

    assert [document.filename for document in changed] == ["b.pdf", "c.pdf"]
    assert tracker.vector_store_id == "vs_1"


def test_corrupt_manifest_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text("{not json", encoding="utf-8")
    tracker = ManifestTracker(path)

    tracker.load()

    assert tracker.entries == {}
    assert tracker.change_set([_doc("a.pdf", "s1")]) == [_doc("a.pdf", "s1")]


def test_legacy_file_id_key_is_accepted(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    path.write_text(
        json.dumps({"vectorStoreId": "vs_1", "files": {"a.pdf": {"sig": "s1", "file_id": "file-a"}}}),
        encoding="utf-8",
    )
    tracker = ManifestTracker(path)
    tracker.load()

    assert tracker.entries["a.pdf"].remote_file_id == "file-a"


def test_commit_writes_manifest_atomically_in_wire_format(tmp_path: Path) -> None:
    path = tmp_path / "state" / "manifest.json"
    tracker = ManifestTracker(path)
    tracker.load()
    tracker.bind_store("vs_1")

    tracker.commit(ManifestEntry(filename="a.pdf", signature="s1", remote_file_id="f1"))

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "vectorStoreId": "vs_1",
        "files": {"a.pdf": {"sig": "s1", "remoteFileId": "f1"}},
    }
    assert not (tmp_path / "state" / "manifest.json.tmp").exists()


def test_commit_keeps_earlier_entries(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    tracker = ManifestTracker(path)
    tracker.load()
    tracker.bind_store("vs_1")
    tracker.commit(ManifestEntry(filename="a.pdf", signature="s1", remote_file_id="f1"))

    reloaded = ManifestTracker(path)
    reloaded.load()
    reloaded.commit(ManifestEntry(filename="b.pdf", signature="s2", remote_file_id="f2"))

    files = json.loads(path.read_text(encoding="utf-8"))["files"]
    assert set(files) == {"a.pdf", "b.pdf"}


def test_binding_a_different_store_drops_entries(tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    tracker = ManifestTracker(path)
    tracker.load()
    tracker.bind_store("vs_old")
    tracker.commit(ManifestEntry(filename="a.pdf", signature="s1", remote_file_id="f1"))

    tracker.bind_store("vs_new")

    assert tracker.entries == {}
    assert tracker.change_set([_doc("a.pdf", "s1")]) == [_doc("a.pdf", "s1")]


def test_failed_commit_leaves_memory_matching_disk(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "manifest.json"
    tracker = ManifestTracker(path)
    tracker.load()
    tracker.bind_store("vs_1")
    tracker.commit(ManifestEntry(filename="a.pdf", signature="s1", remote_file_id="f1"))
    on_disk = path.read_bytes()

    def failing_write(target: Path, payload: object) -> Path:
        raise OSError("disk full")

    monkeypatch.setattr("docindex.services.index.manifest.write_json_atomic", failing_write)

    with pytest.raises(OSError, match="disk full"):
        tracker.commit(ManifestEntry(filename="b.pdf", signature="s2", remote_file_id="f2"))

    assert set(tracker.entries) == {"a.pdf"}
    assert not tracker.is_synced(_doc("b.pdf", "s2"))
    assert path.read_bytes() == on_disk
