"""Index backends: where uploaded documents become searchable.

``LocalIndexBackend`` embeds documents itself and appends them to the local
snapshot file that the retriever serves. ``OpenAIVectorStoreBackend`` hands
the raw files to a hosted vector store and only tracks the remote batch.

Both follow the same upload -> batch -> poll protocol so the ingestion
pipeline does not care which one it drives.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import mimetypes
from typing import Any, Protocol
from uuid import uuid4

import httpx

from docindex.services.index.batch import BatchState, BatchStatus
from docindex.services.index.chunker import chunk_id_for, chunk_text
from docindex.services.index.embedding_client import EmbeddingClient
from docindex.services.index.errors import ConfigurationError, FormatError, NetworkError
from docindex.services.index.loader import read_document_text
from docindex.services.index.snapshot_store import SnapshotStore
from docindex.services.index.types import Chunk, RetrievalHit, SourceDocument


class IndexBackend(Protocol):
    def ensure_store(self, store_id: str | None) -> str: ...

    def upload(self, document: SourceDocument) -> str: ...

    def create_batch(self, store_id: str, file_ids: list[str]) -> BatchState: ...

    def get_batch(self, store_id: str, batch_id: str) -> BatchState: ...


class LocalIndexBackend:
    """Embeds documents in-process and serves them from the local snapshot.

    ``upload`` appends the document's chunks to the snapshot before it returns,
    so a manifest entry committed afterwards always has its chunks on disk. A
    re-uploaded document replaces its earlier chunks in the same write. The
    batch step only confirms that every file id was uploaded by this backend.
    """

    def __init__(
        self,
        *,
        snapshot_store: SnapshotStore,
        embedding_client: EmbeddingClient,
        chunk_size: int,
        chunk_overlap: int,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ConfigurationError("chunk_overlap must be smaller than chunk_size")
        self._snapshot_store = snapshot_store
        self._embedding_client = embedding_client
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._store_id: str | None = None
        self._uploaded: set[str] = set()
        self._batches: dict[str, BatchState] = {}

    def ensure_store(self, store_id: str | None) -> str:
        snapshot = self._snapshot_store.load()
        if (
            snapshot.embedding_model is not None
            and snapshot.embedding_model != self._embedding_client.model
        ):
            raise ConfigurationError(
                f"Embedding model mismatch: snapshot built with {snapshot.embedding_model!r}, "
                f"configured {self._embedding_client.model!r}"
            )
        self._store_id = snapshot.store_id or store_id or f"vs_local_{uuid4().hex[:24]}"
        return self._store_id

    def upload(self, document: SourceDocument) -> str:
        digest = hashlib.sha256(f"{document.filename}\0{document.signature}".encode("utf-8"))
        file_id = f"file-local-{digest.hexdigest()[:24]}"

        pieces = chunk_text(
            read_document_text(document.path),
            chunk_size=self._chunk_size,
            chunk_overlap=self._chunk_overlap,
        )
        embeddings = self._embedding_client.embed_texts(pieces)
        if len(embeddings) != len(pieces):
            raise FormatError(
                f"Embedding client returned {len(embeddings)} vectors for {len(pieces)} chunks"
            )

        chunks = [
            Chunk(
                chunk_id=chunk_id_for(file_id, index),
                text=piece,
                embedding=tuple(embedding),
                source_ref=document.filename,
            )
            for index, (piece, embedding) in enumerate(zip(pieces, embeddings))
        ]
        try:
            self._snapshot_store.append(
                chunks,
                store_id=self._store_id,
                embedding_model=self._embedding_client.model,
                superseding=[document.filename],
            )
        except ValueError as exc:
            raise ConfigurationError(
                f"Chunks of {document.filename} do not fit the snapshot: {exc}"
            ) from exc

        self._uploaded.add(file_id)
        return file_id

    def create_batch(self, store_id: str, file_ids: list[str]) -> BatchState:
        batch_id = f"vsfb_local_{uuid4().hex[:24]}"

        missing = [file_id for file_id in file_ids if file_id not in self._uploaded]
        if missing:
            print(f"[index-sync] batch={batch_id} unknown file ids={missing}", flush=True)
            return self._record(BatchState(batch_id=batch_id, status=BatchStatus.FAILED))

        return self._record(BatchState(batch_id=batch_id, status=BatchStatus.COMPLETED))

    def get_batch(self, store_id: str, batch_id: str) -> BatchState:
        state = self._batches.get(batch_id)
        if state is None:
            raise FormatError(f"Unknown local batch: {batch_id}")
        return state

    def _record(self, state: BatchState) -> BatchState:
        self._batches[state.batch_id] = state
        return state


@dataclass(frozen=True)
class RemoteFile:
    file_id: str
    filename: str


@dataclass(frozen=True)
class VectorStoreRef:
    store_id: str
    name: str | None


def _require_str(payload: dict[str, Any], key: str, *, kind: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise FormatError(f"Invalid {kind} payload: missing {key!r}")
    return value


def _parse_batch(payload: dict[str, Any]) -> BatchState:
    return BatchState(
        batch_id=_require_str(payload, "id", kind="file batch"),
        status=BatchStatus.parse(payload.get("status")),
    )


def _parse_search_hit(record: object, *, position: int) -> RetrievalHit:
    if not isinstance(record, dict):
        raise FormatError(f"Invalid search result #{position}: expected an object")

    file_id = _require_str(record, "file_id", kind="search result")
    score = record.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise FormatError(f"Invalid search result #{position}: missing numeric score")

    content = record.get("content")
    if not isinstance(content, list):
        raise FormatError(f"Invalid search result #{position}: content must be a list")
    texts = [
        part["text"]
        for part in content
        if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
    ]

    filename = record.get("filename")
    return RetrievalHit(
        chunk_id=f"{file_id}-{position:04d}",
        text="\n".join(texts).strip(),
        source_label=filename if isinstance(filename, str) and filename else file_id,
        score=float(score),
    )


class OpenAIVectorStoreBackend:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        store_name: str = "docindex",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._store_name = store_name
        self._timeout_seconds = timeout_seconds

    def ensure_store(self, store_id: str | None) -> str:
        if store_id:
            return store_id

        payload = self._post("/vector_stores", json={"name": self._store_name})
        created = VectorStoreRef(
            store_id=_require_str(payload, "id", kind="vector store"),
            name=payload.get("name") if isinstance(payload.get("name"), str) else None,
        )
        print(f"[index-sync] created vector store id={created.store_id}", flush=True)
        return created.store_id

    def upload(self, document: SourceDocument) -> str:
        content_type = mimetypes.guess_type(document.filename)[0] or "application/octet-stream"
        with document.path.open("rb") as handle:
            payload = self._post(
                "/files",
                data={"purpose": "assistants"},
                files={"file": (document.filename, handle, content_type)},
            )
        remote = RemoteFile(
            file_id=_require_str(payload, "id", kind="file"),
            filename=str(payload.get("filename") or document.filename),
        )
        return remote.file_id

    def create_batch(self, store_id: str, file_ids: list[str]) -> BatchState:
        payload = self._post(f"/vector_stores/{store_id}/file_batches", json={"file_ids": file_ids})
        return _parse_batch(payload)

    def get_batch(self, store_id: str, batch_id: str) -> BatchState:
        payload = self._get(f"/vector_stores/{store_id}/file_batches/{batch_id}")
        return _parse_batch(payload)

    def search(self, store_id: str, query_text: str, *, max_results: int) -> list[RetrievalHit]:
        payload = self._post(
            f"/vector_stores/{store_id}/search",
            json={"query": query_text, "max_num_results": max_results},
        )
        records = payload.get("data")
        if not isinstance(records, list):
            raise FormatError("Invalid search payload: missing data list")
        hits = [_parse_search_hit(record, position=index) for index, record in enumerate(records)]
        return hits[:max_results]

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "assistants=v2",
        }

    def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = httpx.post(
                f"{self._base_url}{path}",
                headers=self._headers(),
                timeout=self._timeout_seconds,
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NetworkError(f"POST {path} failed: {exc}") from exc
        return self._decode(response, path)

    def _get(self, path: str) -> dict[str, Any]:
        try:
            response = httpx.get(
                f"{self._base_url}{path}",
                headers=self._headers(),
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NetworkError(f"GET {path} failed: {exc}") from exc
        return self._decode(response, path)

    @staticmethod
    def _decode(response: httpx.Response, path: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise FormatError(f"Invalid response from {path}: not JSON") from exc
        if not isinstance(payload, dict):
            raise FormatError(f"Invalid response from {path}: expected an object")
        return payload
