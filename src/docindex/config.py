from dataclasses import dataclass
from functools import lru_cache
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


@dataclass(frozen=True)
class Settings:
    credential: str
    embedding_model: str
    embedding_provider: str
    embedding_dim: int
    embedding_base_url: str
    chat_model: str
    documents_dir: str
    manifest_path: str
    snapshot_path: str
    index_backend: str
    openai_base_url: str
    vector_store_id: str
    vector_store_name: str
    signature_mode: str
    poll_interval_ms: int
    poll_timeout_seconds: float
    http_timeout_seconds: float
    chunk_size: int
    chunk_overlap: int
    retrieval_k: int
    database_url: str
    db_echo: bool
    worker_poll_seconds: int
    job_max_attempts: int

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000


@lru_cache
def get_settings() -> Settings:
    return Settings(
        credential=os.getenv("OPENAI_API_KEY", "").strip(),
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_provider=os.getenv("EMBEDDING_PROVIDER", "http").strip().lower(),
        embedding_dim=_to_int(os.getenv("EMBEDDING_DIM"), default=64, minimum=8),
        embedding_base_url=os.getenv("EMBEDDING_BASE_URL", "https://api.openai.com/v1"),
        chat_model=os.getenv("CHAT_MODEL", "gpt-4.1-mini"),
        documents_dir=os.getenv("DOCS_DIR", "docs"),
        manifest_path=os.getenv("MANIFEST_PATH", ".vectorstore_manifest.json"),
        snapshot_path=os.getenv("SNAPSHOT_PATH", "data/index/snapshot.json"),
        index_backend=os.getenv("INDEX_BACKEND", "local").strip().lower(),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        vector_store_id=os.getenv("VECTOR_STORE_ID", "").strip(),
        vector_store_name=os.getenv("VECTOR_STORE_NAME", "docindex"),
        signature_mode=os.getenv("SIGNATURE_MODE", "sha256").strip().lower(),
        poll_interval_ms=_to_int(os.getenv("POLL_INTERVAL_MS"), default=4000, minimum=100),
        poll_timeout_seconds=_to_float(
            os.getenv("POLL_TIMEOUT_SECONDS"), default=600.0, minimum=1.0
        ),
        http_timeout_seconds=_to_float(
            os.getenv("HTTP_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        chunk_size=_to_int(os.getenv("CHUNK_SIZE"), default=800, minimum=100),
        chunk_overlap=_to_int(os.getenv("CHUNK_OVERLAP"), default=100, minimum=0),
        retrieval_k=_to_int(os.getenv("RETRIEVAL_K"), default=4, minimum=1),
        database_url=os.getenv("DATABASE_URL", "sqlite+pysqlite:///data/docindex.db"),
        db_echo=_to_bool(os.getenv("DB_ECHO"), default=False),
        worker_poll_seconds=_to_int(os.getenv("WORKER_POLL_SECONDS"), default=5, minimum=1),
        job_max_attempts=_to_int(os.getenv("JOB_MAX_ATTEMPTS"), default=3, minimum=1),
    )
