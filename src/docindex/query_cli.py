from __future__ import annotations

import argparse
import sys

from docindex.config import get_settings
from docindex.services.index import assemble_context, build_index_context, build_retriever
from docindex.services.index.errors import IndexSyncError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="index-query",
        description="Retrieve grounding context for a question from the local snapshot",
    )
    parser.add_argument("question", nargs="*", help="Question text")
    parser.add_argument("-k", type=int, default=None, help="Number of passages to return")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    question = " ".join(args.question).strip()
    if not question:
        print('Usage: index-query "Your question here"', flush=True)
        return

    try:
        retriever = build_retriever(build_index_context(get_settings()))
        assembled = assemble_context(retriever.retrieve(question, args.k))
    except IndexSyncError as exc:
        print(f"[index-query] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(exc.exit_code) from exc
    except ValueError as exc:
        print(f"[index-query] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print("\nCONTEXT:\n", flush=True)
    print(assembled.text, flush=True)
    if assembled.sources:
        print("\nSOURCES:", flush=True)
        for position, source in enumerate(assembled.sources, start=1):
            print(f"  [{position}] {source}", flush=True)


if __name__ == "__main__":
    main()
