from __future__ import annotations

import argparse
from dataclasses import replace
import signal
import sys
from threading import Event

from docindex.config import get_settings
from docindex.services.index import build_index_context, sync_documents
from docindex.services.index.errors import IndexSyncError


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="index-sync",
        description="Upload new or changed documents and index them",
    )
    parser.add_argument(
        "--docs-dir",
        default=settings.documents_dir,
        help="Directory containing .pdf/.txt/.md source documents",
    )
    parser.add_argument(
        "--manifest-path",
        default=settings.manifest_path,
        help="Manifest recording already-synced document signatures",
    )
    parser.add_argument(
        "--snapshot-path",
        default=settings.snapshot_path,
        help="Local snapshot file written by the local backend",
    )
    parser.add_argument(
        "--backend",
        choices=["local", "openai"],
        default=settings.index_backend,
        help="Index backend receiving the uploads",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = replace(
        get_settings(),
        documents_dir=args.docs_dir,
        manifest_path=args.manifest_path,
        snapshot_path=args.snapshot_path,
        index_backend=args.backend,
    )

    cancel_event = Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())

    try:
        summary = sync_documents(build_index_context(settings), cancel_event=cancel_event)
    except IndexSyncError as exc:
        print(f"[index-sync] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(exc.exit_code) from exc
    except Exception as exc:
        print(f"[index-sync] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(
        "[index-sync] done "
        f"documents={summary.document_count} "
        f"uploaded={len(summary.uploaded)} "
        f"skipped={len(summary.skipped)} "
        f"vector_store={summary.vector_store_id}",
        flush=True,
    )


if __name__ == "__main__":
    main()
