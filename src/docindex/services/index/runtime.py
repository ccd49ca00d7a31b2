from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from docindex.config import Settings
from docindex.services.index.backends import (
    IndexBackend,
    LocalIndexBackend,
    OpenAIVectorStoreBackend,
)
from docindex.services.index.embedding_client import (
    EmbeddingClient,
    HashEmbeddingClient,
    HttpEmbeddingClient,
)
from docindex.services.index.errors import ConfigurationError
from docindex.services.index.loader import SIGNATURE_MODES
from docindex.services.index.manifest import ManifestTracker
from docindex.services.index.retriever import ContextRetriever, Retriever, VectorStoreRetriever
from docindex.services.index.snapshot_store import SnapshotHandle, SnapshotStore

INDEX_BACKENDS = {"local", "openai"}
EMBEDDING_PROVIDERS = {"http", "hash"}


@dataclass
class IndexContext:
    """Handles shared by ingestion and retrieval, built once per process."""

    embedding_client: EmbeddingClient
    manifest: ManifestTracker
    snapshot_store: SnapshotStore
    snapshots: SnapshotHandle
    backend: IndexBackend
    documents_dir: Path
    signature_mode: str = "sha256"
    vector_store_id: str | None = None
    poll_interval_seconds: float = 4.0
    poll_timeout_seconds: float | None = 600.0
    retrieval_k: int = 4
    index_backend: str = "local"


def _build_embedding_client(settings: Settings) -> EmbeddingClient:
    if settings.embedding_provider == "hash":
        return HashEmbeddingClient(dimensions=settings.embedding_dim)
    return HttpEmbeddingClient(
        base_url=settings.embedding_base_url,
        model=settings.embedding_model,
        api_key=settings.credential,
        timeout_seconds=settings.http_timeout_seconds,
    )


def validate_settings(settings: Settings) -> None:
    if settings.index_backend not in INDEX_BACKENDS:
        raise ConfigurationError(
            f"Unknown INDEX_BACKEND {settings.index_backend!r} (supported: {sorted(INDEX_BACKENDS)})"
        )
    if settings.embedding_provider not in EMBEDDING_PROVIDERS:
        raise ConfigurationError(
            f"Unknown EMBEDDING_PROVIDER {settings.embedding_provider!r} "
            f"(supported: {sorted(EMBEDDING_PROVIDERS)})"
        )
    if settings.signature_mode not in SIGNATURE_MODES:
        raise ConfigurationError(
            f"Unknown SIGNATURE_MODE {settings.signature_mode!r} "
            f"(supported: {sorted(SIGNATURE_MODES)})"
        )

    needs_credential = settings.embedding_provider == "http" or settings.index_backend == "openai"
    if needs_credential and not settings.credential:
        raise ConfigurationError("Missing OPENAI_API_KEY")
    if not settings.embedding_model.strip():
        raise ConfigurationError("Missing EMBEDDING_MODEL")
    if settings.chunk_overlap >= settings.chunk_size:
        raise ConfigurationError("CHUNK_OVERLAP must be smaller than CHUNK_SIZE")


def build_index_context(settings: Settings) -> IndexContext:
    """Validate ``settings`` and wire up every handle; performs no I/O."""
    validate_settings(settings)

    embedding_client = _build_embedding_client(settings)
    snapshot_store = SnapshotStore(Path(settings.snapshot_path))

    backend: IndexBackend
    if settings.index_backend == "openai":
        backend = OpenAIVectorStoreBackend(
            base_url=settings.openai_base_url,
            api_key=settings.credential,
            store_name=settings.vector_store_name,
            timeout_seconds=settings.http_timeout_seconds,
        )
    else:
        backend = LocalIndexBackend(
            snapshot_store=snapshot_store,
            embedding_client=embedding_client,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )

    return IndexContext(
        embedding_client=embedding_client,
        manifest=ManifestTracker(Path(settings.manifest_path)),
        snapshot_store=snapshot_store,
        snapshots=SnapshotHandle(snapshot_store),
        backend=backend,
        documents_dir=Path(settings.documents_dir),
        signature_mode=settings.signature_mode,
        vector_store_id=settings.vector_store_id or None,
        poll_interval_seconds=settings.poll_interval_seconds,
        poll_timeout_seconds=settings.poll_timeout_seconds,
        retrieval_k=settings.retrieval_k,
        index_backend=settings.index_backend,
    )


def _remote_store_id(context: IndexContext) -> str | None:
    if context.vector_store_id:
        return context.vector_store_id
    # a fresh tracker: the shared one belongs to ingestion
    manifest = ManifestTracker(context.manifest.path)
    manifest.load()
    return manifest.vector_store_id


def build_retriever(context: IndexContext) -> ContextRetriever:
    """Query the index the configured backend writes to.

    The local backend is served from the snapshot; the hosted store is
    searched remotely, since nothing lands in the snapshot in that mode.
    """
    if context.index_backend == "openai":
        if not isinstance(context.backend, OpenAIVectorStoreBackend):
            raise ConfigurationError("INDEX_BACKEND=openai requires the OpenAI vector store backend")
        return VectorStoreRetriever(
            context.backend,
            lambda: _remote_store_id(context),
            default_k=context.retrieval_k,
        )
    return Retriever(
        context.snapshots,
        context.embedding_client,
        default_k=context.retrieval_k,
    )
