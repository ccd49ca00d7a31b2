from __future__ import annotations

import argparse
from dataclasses import replace
import json
import sys
from time import perf_counter
from typing import TypedDict

from docindex.config import Settings, get_settings
from docindex.services.index.errors import IndexSyncError
from docindex.services.index.pipeline import sync_documents
from docindex.services.index.runtime import IndexContext, build_index_context

_OVERRIDABLE_FIELDS = ("documents_dir", "manifest_path", "snapshot_path", "vector_store_id")


class SyncResult(TypedDict):
    documents: int
    uploaded: list[str]
    skipped: list[str]
    vector_store_id: str | None
    batch_id: str | None
    batch_status: str | None
    duration_ms: int
    embed_model: str


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="index-sync-runner",
        description="Run one index sync and print JSON metrics",
    )
    parser.add_argument(
        "--payload-json",
        default=None,
        help="Optional JSON object with overrides (documents_dir/manifest_path/snapshot_path/vector_store_id)",
    )
    return parser


def run_sync_job(context: IndexContext) -> SyncResult:
    start = perf_counter()
    summary = sync_documents(context)
    duration_ms = int((perf_counter() - start) * 1000)
    return {
        "documents": summary.document_count,
        "uploaded": summary.uploaded,
        "skipped": summary.skipped,
        "vector_store_id": summary.vector_store_id,
        "batch_id": summary.batch_id,
        "batch_status": summary.batch_status,
        "duration_ms": duration_ms,
        "embed_model": context.embedding_client.model,
    }


def _resolve_payload(payload_json_raw: str | None) -> dict[str, object]:
    if payload_json_raw is None:
        return {}
    parsed = json.loads(payload_json_raw)
    if not isinstance(parsed, dict):
        raise ValueError("payload_json must be a JSON object")
    return parsed


def apply_overrides(settings: Settings, payload: dict[str, object]) -> Settings:
    overrides: dict[str, str] = {}
    for key in _OVERRIDABLE_FIELDS:
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"{key} must be a string")
        overrides[key] = value
    return replace(settings, **overrides)


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        payload = _resolve_payload(args.payload_json)
        settings = apply_overrides(get_settings(), payload)
        metrics = run_sync_job(build_index_context(settings))
    except IndexSyncError as exc:
        print(f"[index-sync-runner] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(exc.exit_code) from exc
    except Exception as exc:
        print(f"[index-sync-runner] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(json.dumps(metrics), flush=True)


if __name__ == "__main__":
    main()
