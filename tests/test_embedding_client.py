import math

import httpx
import pytest

from docindex.services.index.embedding_client import HashEmbeddingClient, HttpEmbeddingClient
from docindex.services.index.errors import FormatError, NetworkError


class _FakeResponse:
    def __init__(self, payload: object, *, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
            response = httpx.Response(self.status_code, request=request)
            raise httpx.HTTPStatusError("request failed", request=request, response=response)

    def json(self) -> object:
        return self._payload


def test_http_embedding_client_parses_vectors(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_post(url: str, *, json: dict[str, object], headers: dict[str, str], timeout: float) -> _FakeResponse:
        captured["url"] = url
        captured["json"] = json
        captured["headers"] = headers
        captured["timeout"] = timeout
        return _FakeResponse(
            {
                "data": [
                    {"embedding": [1, 2, 3]},
                    {"embedding": [4.5, 5.0, 6.25]},
                ]
            }
        )

    monkeypatch.setattr("docindex.services.index.embedding_client.httpx.post", fake_post)

    client = HttpEmbeddingClient(
        base_url="https://api.openai.com/v1/",
        model="text-embedding-3-small",
        api_key="sk-test",
        timeout_seconds=12,
    )
    vectors = client.embed_texts(["first", "second"])

    assert vectors == [[1.0, 2.0, 3.0], [4.5, 5.0, 6.25]]
    assert captured["url"] == "https://api.openai.com/v1/embeddings"
    assert captured["json"] == {
        "model": "text-embedding-3-small",
        "input": ["first", "second"],
    }
    assert captured["headers"] == {"Authorization": "Bearer sk-test"}
    assert captured["timeout"] == 12


def test_http_embedding_client_skips_request_for_empty_input(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_post(*args: object, **kwargs: object) -> _FakeResponse:
        raise AssertionError("no request expected")

    monkeypatch.setattr("docindex.services.index.embedding_client.httpx.post", fake_post)

    client = HttpEmbeddingClient(base_url="http://localhost:11434/v1", model="nomic-embed-text")

    assert client.embed_texts([]) == []


def test_http_embedding_client_rejects_payload_size_mismatch(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_post(url: str, *, json: dict[str, object], headers: dict[str, str], timeout: float) -> _FakeResponse:
        del url, json, headers, timeout
        return _FakeResponse({"data": [{"embedding": [1, 2, 3]}]})

    monkeypatch.setattr("docindex.services.index.embedding_client.httpx.post", fake_post)

    client = HttpEmbeddingClient(base_url="http://localhost:11434/v1", model="nomic-embed-text")

    with pytest.raises(FormatError, match="expected 2 vectors"):
        client.embed_texts(["first", "second"])


def test_http_embedding_client_rejects_missing_data(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, *, json: dict[str, object], headers: dict[str, str], timeout: float) -> _FakeResponse:
        del url, json, headers, timeout
        return _FakeResponse({"object": "list"})

    monkeypatch.setattr("docindex.services.index.embedding_client.httpx.post", fake_post)

    client = HttpEmbeddingClient(base_url="http://localhost:11434/v1", model="nomic-embed-text")

    with pytest.raises(FormatError, match="missing data"):
        client.embed_texts(["first"])


def test_http_embedding_client_wraps_http_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, *, json: dict[str, object], headers: dict[str, str], timeout: float) -> _FakeResponse:
        del url, json, headers, timeout
        return _FakeResponse({}, status_code=503)

    monkeypatch.setattr("docindex.services.index.embedding_client.httpx.post", fake_post)

    client = HttpEmbeddingClient(base_url="http://localhost:11434/v1", model="nomic-embed-text")

    with pytest.raises(NetworkError, match="Embedding request failed"):
        client.embed_texts(["first"])


def test_hash_embedding_client_is_deterministic_and_normalized() -> None:
    client = HashEmbeddingClient(dimensions=24)

    first, again, other = client.embed_texts(["same text", "same text", "other text"])

    assert first == again
    assert first != other
    assert len(first) == 24
    assert math.isclose(math.sqrt(sum(value * value for value in first)), 1.0, rel_tol=1e-9)
    assert client.model == "hash-sha256-24"
