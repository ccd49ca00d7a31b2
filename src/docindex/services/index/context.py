from __future__ import annotations

from dataclasses import dataclass

from docindex.services.index.types import RetrievalHit

NO_CONTEXT_PLACEHOLDER = "No context available: the document index has not been built yet."


@dataclass(frozen=True)
class AssembledContext:
    text: str
    sources: list[str]

    @property
    def has_context(self) -> bool:
        return bool(self.sources)


def assemble_context(hits: list[RetrievalHit]) -> AssembledContext:
    """Render ``hits`` as numbered passages; ``sources[i]`` cites passage ``[i + 1]``."""
    if not hits:
        return AssembledContext(text=NO_CONTEXT_PLACEHOLDER, sources=[])

    text = "\n\n".join(
        f"[{position}] (source: {hit.source_label})\n{hit.text}"
        for position, hit in enumerate(hits, start=1)
    )
    return AssembledContext(text=text, sources=[hit.source_label for hit in hits])
