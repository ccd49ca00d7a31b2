from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import Protocol

from docindex.services.index.embedding_client import EmbeddingClient
from docindex.services.index.errors import ConfigurationError, FormatError
from docindex.services.index.snapshot_store import SnapshotHandle
from docindex.services.index.types import Chunk, RetrievalHit

EPSILON = 1e-12


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    score = dot / (norm_a * norm_b + EPSILON)
    return max(-1.0, min(1.0, score))


def _normalize_request(query_text: str, k: int | None, *, default_k: int) -> tuple[str, int]:
    normalized_query = query_text.strip()
    if not normalized_query:
        raise ValueError("query_text must not be empty")

    top_k = default_k if k is None else k
    if top_k < 1:
        raise ValueError("k must be >= 1")
    return normalized_query, top_k


def rank_chunks(
    chunks: Sequence[Chunk],
    query_embedding: Sequence[float],
    *,
    k: int,
) -> list[RetrievalHit]:
    hits = [
        RetrievalHit(
            chunk_id=chunk.chunk_id,
            text=chunk.text,
            source_label=chunk.source_ref,
            score=cosine_similarity(query_embedding, chunk.embedding),
        )
        for chunk in chunks
    ]
    # list.sort is stable, so equal scores keep snapshot order
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:k]


class Retriever:
    """Brute-force cosine search over the snapshot behind ``snapshots``.

    Safe to share across threads: each call reads one immutable snapshot.
    """

    def __init__(
        self,
        snapshots: SnapshotHandle,
        embedding_client: EmbeddingClient,
        *,
        default_k: int = 4,
    ) -> None:
        self._snapshots = snapshots
        self._embedding_client = embedding_client
        self.default_k = default_k

    def retrieve(self, query_text: str, k: int | None = None) -> list[RetrievalHit]:
        normalized_query, top_k = _normalize_request(query_text, k, default_k=self.default_k)

        snapshot = self._snapshots.current
        if snapshot.is_empty:
            return []

        if (
            snapshot.embedding_model is not None
            and snapshot.embedding_model != self._embedding_client.model
        ):
            raise ConfigurationError(
                f"Embedding model mismatch: index built with {snapshot.embedding_model!r}, "
                f"querying with {self._embedding_client.model!r}"
            )

        vectors = self._embedding_client.embed_texts([normalized_query])
        if len(vectors) != 1:
            raise FormatError(f"Expected 1 query embedding, got {len(vectors)}")

        query_embedding = vectors[0]
        if len(query_embedding) != snapshot.dimensions:
            raise ConfigurationError(
                f"Query embedding has {len(query_embedding)} dimensions, "
                f"index uses {snapshot.dimensions}"
            )

        return rank_chunks(snapshot.chunks, query_embedding, k=top_k)


class ContextRetriever(Protocol):
    def retrieve(self, query_text: str, k: int | None = None) -> list[RetrievalHit]: ...


class VectorStoreSearch(Protocol):
    def search(self, store_id: str, query_text: str, *, max_results: int) -> list[RetrievalHit]: ...


class VectorStoreRetriever:
    """Ranks chunks with the hosted vector store's own search endpoint.

    ``store_id`` is resolved per call so a store created by a sync that ran
    after startup is picked up. No store yet means no index: an empty result.
    """

    def __init__(
        self,
        search_backend: VectorStoreSearch,
        store_id: Callable[[], str | None],
        *,
        default_k: int = 4,
    ) -> None:
        self._search_backend = search_backend
        self._store_id = store_id
        self.default_k = default_k

    def retrieve(self, query_text: str, k: int | None = None) -> list[RetrievalHit]:
        normalized_query, top_k = _normalize_request(query_text, k, default_k=self.default_k)

        store_id = self._store_id()
        if not store_id:
            return []

        hits = self._search_backend.search(store_id, normalized_query, max_results=top_k)
        return hits[:top_k]
