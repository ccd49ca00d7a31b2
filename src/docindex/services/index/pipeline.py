"""Ingestion pipeline: bring the index in line with the documents directory.

One run is strictly sequential: discover documents, diff them against the
manifest, upload each changed document (committing its manifest entry as
soon as the upload succeeds), submit all uploads as one indexing batch and
poll that batch to a terminal state.

Callers must not run two syncs against the same manifest at once; the API
and worker enforce that by allowing one queued/running ``index_sync`` job.
"""

from __future__ import annotations

from threading import Event
import time
from typing import Callable

from docindex.services.index.batch import BatchStatus, poll_batch
from docindex.services.index.errors import IndexingFailure, SyncCancelled
from docindex.services.index.loader import discover_documents
from docindex.services.index.runtime import IndexContext
from docindex.services.index.types import ManifestEntry, SyncSummary


def _raise_if_cancelled(cancel_event: Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelled(f"Sync cancelled {stage}")


def sync_documents(
    context: IndexContext,
    *,
    cancel_event: Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> SyncSummary:
    documents = discover_documents(context.documents_dir, signature_mode=context.signature_mode)
    print(f"[index-sync] documents found count={len(documents)}", flush=True)

    manifest = context.manifest
    manifest.load()
    if context.vector_store_id:
        manifest.bind_store(context.vector_store_id)

    pending = manifest.change_set(documents)
    if not pending:
        print("[index-sync] no new/changed documents; index is up to date", flush=True)
        return SyncSummary(
            vector_store_id=manifest.vector_store_id,
            document_count=len(documents),
            skipped=[document.filename for document in documents],
        )

    store_id = context.backend.ensure_store(manifest.vector_store_id)
    manifest.bind_store(store_id)
    pending = manifest.change_set(documents)
    pending_names = {document.filename for document in pending}
    print(f"[index-sync] vector_store={store_id} changed={len(pending)}", flush=True)

    file_ids: list[str] = []
    uploaded: list[str] = []
    for document in pending:
        _raise_if_cancelled(cancel_event, f"before uploading {document.filename}")
        print(f"[index-sync] uploading file={document.filename}", flush=True)
        remote_file_id = context.backend.upload(document)
        manifest.commit(
            ManifestEntry(
                filename=document.filename,
                signature=document.signature,
                remote_file_id=remote_file_id,
            )
        )
        file_ids.append(remote_file_id)
        uploaded.append(document.filename)

    _raise_if_cancelled(cancel_event, "before batch submission")
    batch = context.backend.create_batch(store_id, file_ids)
    print(f"[index-sync] batch created id={batch.batch_id} status={batch.status.value}", flush=True)

    final = poll_batch(
        lambda batch_id: context.backend.get_batch(store_id, batch_id),
        batch,
        interval_seconds=context.poll_interval_seconds,
        timeout_seconds=context.poll_timeout_seconds,
        cancel_event=cancel_event,
        sleep=sleep,
        clock=clock,
    )
    if final.status is not BatchStatus.COMPLETED:
        raise IndexingFailure(final.batch_id, final.status.value)

    print(f"[index-sync] completed vector_store={store_id} uploaded={len(uploaded)}", flush=True)
    return SyncSummary(
        vector_store_id=store_id,
        document_count=len(documents),
        uploaded=uploaded,
        skipped=[document.filename for document in documents if document.filename not in pending_names],
        batch_id=final.batch_id,
        batch_status=final.status.value,
    )
