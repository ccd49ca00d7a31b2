"""Manifest Tracker.

Records which signature of which source document has already been uploaded,
so unchanged documents are never re-embedded or re-uploaded. The on-disk shape::

    {"vectorStoreId": "vs_...", "files": {"a.pdf": {"sig": "...", "remoteFileId": "file-..."}}}

The tracker is the only writer of the manifest file. Every commit rewrites the
whole file atomically; a missing or unreadable manifest means nothing has been
synced yet.
"""

from __future__ import annotations

import json
from pathlib import Path
import sys

from docindex.services.index.atomic_io import write_json_atomic
from docindex.services.index.types import ManifestEntry, SourceDocument


def _parse_entries(files: object) -> dict[str, ManifestEntry]:
    if not isinstance(files, dict):
        return {}

    entries: dict[str, ManifestEntry] = {}
    for filename, raw in files.items():
        if not isinstance(filename, str) or not isinstance(raw, dict):
            continue
        signature = raw.get("sig")
        # older manifests store the remote id under "file_id"
        remote_file_id = raw.get("remoteFileId", raw.get("file_id"))
        if not isinstance(signature, str) or not isinstance(remote_file_id, str):
            continue
        entries[filename] = ManifestEntry(
            filename=filename,
            signature=signature,
            remote_file_id=remote_file_id,
        )
    return entries


class ManifestTracker:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._vector_store_id: str | None = None
        self._entries: dict[str, ManifestEntry] = {}

    @property
    def vector_store_id(self) -> str | None:
        return self._vector_store_id

    @property
    def entries(self) -> dict[str, ManifestEntry]:
        return dict(self._entries)

    def load(self) -> None:
        self._vector_store_id = None
        self._entries = {}

        if not self.path.exists():
            return

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            print(
                f"[index-sync] manifest unreadable path={self.path} error={exc}; starting fresh",
                file=sys.stderr,
                flush=True,
            )
            return

        if not isinstance(payload, dict):
            print(
                f"[index-sync] manifest malformed path={self.path}; starting fresh",
                file=sys.stderr,
                flush=True,
            )
            return

        store_id = payload.get("vectorStoreId")
        self._vector_store_id = store_id if isinstance(store_id, str) and store_id else None
        self._entries = _parse_entries(payload.get("files"))

    def is_synced(self, document: SourceDocument) -> bool:
        entry = self._entries.get(document.filename)
        return entry is not None and entry.signature == document.signature

    def change_set(self, documents: list[SourceDocument]) -> list[SourceDocument]:
        return [document for document in documents if not self.is_synced(document)]

    def bind_store(self, vector_store_id: str) -> None:
        """Point the manifest at ``vector_store_id``.

        Entries recorded against a different store do not describe this one and
        are dropped. Nothing is written until the next commit.
        """
        if self._vector_store_id is not None and self._vector_store_id != vector_store_id:
            self._entries = {}
        self._vector_store_id = vector_store_id

    def commit(self, entry: ManifestEntry) -> None:
        entries = {**self._entries, entry.filename: entry}
        write_json_atomic(self.path, self._payload(entries))
        # memory follows disk only once the write has landed
        self._entries = entries

    def _payload(self, entries: dict[str, ManifestEntry]) -> dict[str, object]:
        return {
            "vectorStoreId": self._vector_store_id or "",
            "files": {
                filename: {"sig": item.signature, "remoteFileId": item.remote_file_id}
                for filename, item in sorted(entries.items())
            },
        }
