from __future__ import annotations


class IndexSyncError(RuntimeError):
    exit_code = 1


class ConfigurationError(IndexSyncError):
    """Missing credential or an embedding model that disagrees with the index."""

    exit_code = 3


class DiscoveryError(IndexSyncError):
    exit_code = 2


class NetworkError(IndexSyncError):
    """Embedding, upload or poll request failed; safe to retry the run."""

    exit_code = 1


class FormatError(IndexSyncError):
    exit_code = 5


class IndexingFailure(IndexSyncError):
    exit_code = 4

    def __init__(self, batch_id: str, status: str) -> None:
        super().__init__(f"Indexing batch {batch_id} ended with status: {status}")
        self.batch_id = batch_id
        self.status = status


class SyncCancelled(IndexSyncError):
    exit_code = 130


RETRYABLE_EXIT_CODES = frozenset({NetworkError.exit_code})
