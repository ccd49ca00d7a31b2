from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from docindex.config import get_settings
from docindex.db import Base, get_engine
from docindex.main import _cached_index_context, app


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    _cached_index_context.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()
    _cached_index_context.cache_clear()


@pytest.fixture
def index_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every index path at ``tmp_path`` and use offline embeddings."""
    docs_dir = tmp_path / "docs"
    docs_dir.mkdir()
    monkeypatch.setenv("DOCS_DIR", str(docs_dir))
    monkeypatch.setenv("MANIFEST_PATH", str(tmp_path / "manifest.json"))
    monkeypatch.setenv("SNAPSHOT_PATH", str(tmp_path / "index" / "snapshot.json"))
    monkeypatch.setenv("INDEX_BACKEND", "local")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hash")
    monkeypatch.setenv("EMBEDDING_DIM", "16")
    monkeypatch.setenv("CHUNK_SIZE", "200")
    monkeypatch.setenv("CHUNK_OVERLAP", "20")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("VECTOR_STORE_ID", raising=False)
    # settings may already be cached by the client fixture's get_engine() call
    get_settings.cache_clear()
    return docs_dir


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("DB_ECHO", "false")

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    engine.dispose()
