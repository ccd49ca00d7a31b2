from __future__ import annotations

import hashlib
import math
from typing import Protocol

import httpx

from docindex.services.index.errors import FormatError, NetworkError


class EmbeddingClient(Protocol):
    model: str

    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class HttpEmbeddingClient:
    """Client for OpenAI-compatible ``/embeddings`` endpoints (OpenAI, Ollama, vLLM)."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.model = model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            response = httpx.post(
                f"{self._base_url}/embeddings",
                json={"model": self.model, "input": texts},
                headers=headers,
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NetworkError(f"Embedding request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FormatError("Invalid embeddings payload: not JSON") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise FormatError("Invalid embeddings payload: missing data")

        vectors: list[list[float]] = []
        for item in data:
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list) or not embedding:
                raise FormatError("Invalid embeddings payload: missing embedding vector")
            try:
                vectors.append([float(value) for value in embedding])
            except (TypeError, ValueError) as exc:
                raise FormatError("Invalid embeddings payload: non-numeric component") from exc

        if len(vectors) != len(texts):
            raise FormatError(
                f"Invalid embeddings payload: expected {len(texts)} vectors, got {len(vectors)}"
            )
        if len({len(vector) for vector in vectors}) > 1:
            raise FormatError("Invalid embeddings payload: vectors differ in dimensionality")

        return vectors


def _deterministic_embedding(text: str, *, dimensions: int) -> list[float]:
    if dimensions <= 0:
        raise ValueError("dimensions must be > 0")

    seed = hashlib.sha256(text.encode("utf-8")).digest()
    values: list[int] = []
    digest = seed

    while len(values) < dimensions:
        digest = hashlib.sha256(digest + seed).digest()
        values.extend(digest)

    vector = [((value / 127.5) - 1.0) for value in values[:dimensions]]
    norm = math.sqrt(sum(value * value for value in vector))
    if norm > 0:
        return [value / norm for value in vector]

    return vector


class HashEmbeddingClient:
    """Offline embeddings derived from a SHA-256 stream; identical text, identical vector."""

    def __init__(self, *, dimensions: int = 64) -> None:
        self.dimensions = dimensions
        self.model = f"hash-sha256-{dimensions}"

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [_deterministic_embedding(text, dimensions=self.dimensions) for text in texts]
