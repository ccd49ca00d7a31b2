from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
import json
from pathlib import Path
from threading import Lock

from docindex.services.index.atomic_io import write_json_atomic
from docindex.services.index.errors import ConfigurationError, FormatError
from docindex.services.index.types import EMPTY_SNAPSHOT, Chunk, VectorStoreSnapshot

SNAPSHOT_VERSION = "s1"


def _parse_chunk(record: object, *, position: int) -> Chunk:
    if not isinstance(record, dict):
        raise FormatError(f"Invalid snapshot record #{position}: expected an object")

    chunk_id = record.get("id")
    text = record.get("text")
    source_ref = record.get("sourceRef")
    embedding = record.get("embedding")
    if (
        not isinstance(chunk_id, str)
        or not isinstance(text, str)
        or not isinstance(source_ref, str)
        or not isinstance(embedding, list)
        or not embedding
    ):
        raise FormatError(f"Invalid snapshot record #{position}: missing id/text/embedding/sourceRef")

    try:
        vector = tuple(float(value) for value in embedding)
    except (TypeError, ValueError) as exc:
        raise FormatError(f"Invalid snapshot record #{position}: non-numeric embedding") from exc

    return Chunk(chunk_id=chunk_id, text=text, embedding=vector, source_ref=source_ref)


def _check_invariants(chunks: Iterable[Chunk]) -> None:
    seen_ids: set[str] = set()
    dimensions: int | None = None

    for chunk in chunks:
        if chunk.dimensions == 0:
            raise ValueError(f"Chunk {chunk.chunk_id} has an empty embedding")
        if dimensions is None:
            dimensions = chunk.dimensions
        elif chunk.dimensions != dimensions:
            raise ValueError(
                f"Chunk {chunk.chunk_id} has {chunk.dimensions} dimensions, "
                f"snapshot uses {dimensions}"
            )
        if chunk.chunk_id in seen_ids:
            raise ValueError(f"Duplicate chunk id in snapshot: {chunk.chunk_id}")
        seen_ids.add(chunk.chunk_id)


class SnapshotStore:
    """Whole-file JSON persistence for a :class:`VectorStoreSnapshot`."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> VectorStoreSnapshot:
        if not self.path.exists():
            return EMPTY_SNAPSHOT

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise FormatError(f"Snapshot unreadable: {self.path}: {exc}") from exc

        if not isinstance(payload, dict):
            raise FormatError(f"Invalid snapshot payload in {self.path}: expected an object")

        records = payload.get("chunks")
        if not isinstance(records, list):
            raise FormatError(f"Invalid snapshot payload in {self.path}: 'chunks' must be a list")

        store_id = payload.get("vectorStoreId")
        embedding_model = payload.get("embeddingModel")
        chunks = tuple(_parse_chunk(record, position=index) for index, record in enumerate(records))
        try:
            _check_invariants(chunks)
        except ValueError as exc:
            raise FormatError(f"Invalid snapshot payload in {self.path}: {exc}") from exc

        return VectorStoreSnapshot(
            store_id=store_id if isinstance(store_id, str) else "",
            embedding_model=embedding_model if isinstance(embedding_model, str) else None,
            chunks=chunks,
        )

    def append(
        self,
        chunks: list[Chunk],
        *,
        store_id: str | None = None,
        embedding_model: str | None = None,
        superseding: Iterable[str] = (),
    ) -> VectorStoreSnapshot:
        """Add ``chunks`` to the persisted snapshot and return the new snapshot.

        Existing chunks whose ``source_ref`` is listed in ``superseding`` are
        dropped in the same write. Raises ``ValueError`` when the result would
        mix embedding dimensionalities or repeat a chunk id, and
        ``ConfigurationError`` when ``embedding_model`` differs from the model
        the snapshot was built with.
        """
        current = self.load()

        if (
            embedding_model is not None
            and current.embedding_model is not None
            and embedding_model != current.embedding_model
        ):
            raise ConfigurationError(
                f"Embedding model mismatch: snapshot built with {current.embedding_model!r}, "
                f"ingesting with {embedding_model!r}"
            )

        replaced = set(superseding)
        kept = [chunk for chunk in current.chunks if chunk.source_ref not in replaced]
        merged = tuple(kept) + tuple(chunks)
        _check_invariants(merged)

        snapshot = VectorStoreSnapshot(
            store_id=current.store_id or store_id or "",
            embedding_model=current.embedding_model or embedding_model,
            chunks=merged,
        )
        write_json_atomic(self.path, self._payload(snapshot))
        return snapshot

    @staticmethod
    def _payload(snapshot: VectorStoreSnapshot) -> dict[str, object]:
        return {
            "version": SNAPSHOT_VERSION,
            "vectorStoreId": snapshot.store_id,
            "embeddingModel": snapshot.embedding_model,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "chunkCount": len(snapshot.chunks),
            "chunks": [
                {
                    "id": chunk.chunk_id,
                    "text": chunk.text,
                    "embedding": list(chunk.embedding),
                    "sourceRef": chunk.source_ref,
                }
                for chunk in snapshot.chunks
            ],
        }


class SnapshotHandle:
    """Reference to the snapshot currently served to queries.

    Readers take ``current`` once per query and never see a half-applied
    refresh: a reload builds the new snapshot completely, then rebinds.
    """

    def __init__(self, store: SnapshotStore, snapshot: VectorStoreSnapshot | None = None) -> None:
        self._store = store
        self._snapshot = snapshot
        self._reload_lock = Lock()

    @property
    def current(self) -> VectorStoreSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            return self.reload()
        return snapshot

    def swap(self, snapshot: VectorStoreSnapshot) -> None:
        self._snapshot = snapshot

    def reload(self) -> VectorStoreSnapshot:
        with self._reload_lock:
            snapshot = self._store.load()
            self._snapshot = snapshot
            return snapshot
