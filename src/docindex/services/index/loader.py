from __future__ import annotations

import hashlib
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from docindex.services.index.errors import ConfigurationError, DiscoveryError, FormatError
from docindex.services.index.types import SourceDocument

SUPPORTED_EXTENSIONS = {".pdf", ".txt", ".md"}
SIGNATURE_MODES = {"sha256", "mtime"}

_HASH_BLOCK_SIZE = 1 << 16


def _mtime_ms(mtime_ns: int) -> str:
    """Millisecond mtime rendered like a JavaScript number (`1700000000123.4567`, `1700000000000`).

    Matches the signatures stored in manifests written by the Node setup script.
    """
    seconds, nanoseconds = divmod(mtime_ns, 1_000_000_000)
    value = seconds * 1000 + nanoseconds / 1_000_000
    if value.is_integer():
        return str(int(value))
    return repr(value)


def compute_signature(path: Path, *, mode: str = "sha256") -> str:
    if mode == "sha256":
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            for block in iter(lambda: handle.read(_HASH_BLOCK_SIZE), b""):
                digest.update(block)
        return f"sha256:{digest.hexdigest()}"

    if mode == "mtime":
        stat = path.stat()
        return f"{stat.st_size}-{_mtime_ms(stat.st_mtime_ns)}"

    raise ConfigurationError(
        f"Unknown signature mode {mode!r} (supported: {sorted(SIGNATURE_MODES)})"
    )


def discover_documents(
    documents_dir: Path,
    *,
    signature_mode: str = "sha256",
    supported_extensions: set[str] | None = None,
) -> list[SourceDocument]:
    if not documents_dir.exists():
        raise DiscoveryError(f"Missing documents folder: {documents_dir}")
    if not documents_dir.is_dir():
        raise DiscoveryError(f"Documents path is not a directory: {documents_dir}")

    extensions = supported_extensions or SUPPORTED_EXTENSIONS
    files = sorted(
        (
            path
            for path in documents_dir.iterdir()
            if path.is_file() and path.suffix.lower() in extensions
        ),
        key=lambda path: path.name,
    )

    if not files:
        raise DiscoveryError(
            f"No source documents found in {documents_dir} "
            f"(supported: {sorted(extensions)})"
        )

    return [
        SourceDocument(
            filename=path.name,
            path=path,
            signature=compute_signature(path, mode=signature_mode),
        )
        for path in files
    ]


def read_document_text(path: Path) -> str:
    if path.suffix.lower() == ".pdf":
        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PdfReadError, OSError) as exc:
            raise FormatError(f"Unreadable PDF {path.name}: {exc}") from exc
        return "\n\n".join(page.strip() for page in pages if page.strip())

    try:
        return path.read_text(encoding="utf-8").strip()
    except UnicodeDecodeError as exc:
        raise FormatError(f"Document {path.name} is not valid UTF-8 text") from exc
