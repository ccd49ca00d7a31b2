from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class SourceDocument:
    filename: str
    path: Path
    signature: str


@dataclass(frozen=True)
class ManifestEntry:
    filename: str
    signature: str
    remote_file_id: str


@dataclass(frozen=True)
class Chunk:
    chunk_id: str
    text: str
    embedding: tuple[float, ...]
    source_ref: str

    @property
    def dimensions(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class VectorStoreSnapshot:
    store_id: str
    embedding_model: str | None = None
    chunks: tuple[Chunk, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    @property
    def dimensions(self) -> int | None:
        if not self.chunks:
            return None
        return self.chunks[0].dimensions

    def __len__(self) -> int:
        return len(self.chunks)


EMPTY_SNAPSHOT = VectorStoreSnapshot(store_id="")


@dataclass(frozen=True)
class RetrievalHit:
    chunk_id: str
    text: str
    source_label: str
    score: float

    def as_dict(self) -> dict[str, object]:
        return {
            "chunk_id": self.chunk_id,
            "text": self.text,
            "sourceLabel": self.source_label,
            "score": round(self.score, 6),
        }


@dataclass(frozen=True)
class SyncSummary:
    vector_store_id: str | None
    document_count: int
    uploaded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    batch_id: str | None = None
    batch_status: str | None = None

    @property
    def up_to_date(self) -> bool:
        return not self.uploaded
