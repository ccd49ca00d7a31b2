from docindex.services.index.context import NO_CONTEXT_PLACEHOLDER, AssembledContext, assemble_context
from docindex.services.index.pipeline import sync_documents
from docindex.services.index.retriever import ContextRetriever, Retriever, VectorStoreRetriever, cosine_similarity
from docindex.services.index.runtime import IndexContext, build_index_context, build_retriever
from docindex.services.index.types import RetrievalHit, SyncSummary

__all__ = [
    "AssembledContext",
    "ContextRetriever",
    "IndexContext",
    "NO_CONTEXT_PLACEHOLDER",
    "RetrievalHit",
    "Retriever",
    "SyncSummary",
    "VectorStoreRetriever",
    "assemble_context",
    "build_index_context",
    "build_retriever",
    "cosine_similarity",
    "sync_documents",
]
