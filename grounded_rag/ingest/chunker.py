"""
Character-based chunking with absolute offsets.

Two strategies:
  - fixed_overlap: sliding window with a "smart cut" that prefers paragraph,
    sentence, then line boundaries near the window end.
  - markdown_aware: one section per `#`/`##`/`###` heading (fenced code is
    ignored); short sections are dropped, long ones are window-split.

Every chunk carries [start_char, end_char) relative to Document.text,
and chunk_index/chunk_id are assigned in a final reindex pass.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from ..errors import ConfigError
from ..index.schema import Chunk, ChunkStrategy, Document
from ..settings import RuntimeSettings

SMART_CUT_WINDOW = 120
DOCUMENT_SECTION = "(Documento)"
PREAMBLE_SECTION = "(Preambulo)"
NO_SECTION = "(Sin seccion)"


def validate_chunking(settings: RuntimeSettings) -> None:
    if settings.chunk_size_chars <= 0 or settings.chunk_overlap_chars < 0 or settings.min_chunk_chars <= 0:
        raise ConfigError("chunk settings must be positive")
    if settings.chunk_overlap_chars >= settings.chunk_size_chars:
        raise ConfigError("chunk overlap must be smaller than chunk size")


def chunk_document(doc: Document, settings: RuntimeSettings) -> List[Chunk]:
    strategy = settings.chunk_strategy
    if strategy == ChunkStrategy.FIXED_OVERLAP:
        return chunk_fixed(doc, settings)
    if strategy == ChunkStrategy.MARKDOWN_AWARE:
        return chunk_markdown_aware(doc, settings)
    raise ConfigError(f"unsupported chunk strategy: {strategy!r}")


def _reindex(chunks: List[Chunk]) -> List[Chunk]:
    return [
        c.model_copy(update={"chunk_index": i, "chunk_id": f"{c.doc_id}_chunk_{i:04d}"})
        for i, c in enumerate(chunks)
    ]


def _make_chunk(
    doc: Document,
    settings: RuntimeSettings,
    section_title: str,
    text: str,
    start: int,
    strategy: ChunkStrategy,
) -> Chunk:
    return Chunk(
        doc_id=doc.doc_id,
        doc_title=doc.title,
        section_title=section_title,
        start_char=start,
        end_char=start + len(text),
        text=text,
        strategy=strategy,
        chunk_size=settings.chunk_size_chars,
        overlap=settings.chunk_overlap_chars,
    )


# ---------------------------
# Fixed size with overlap
# ---------------------------

def find_smart_cut(text: str, start: int, preferred_end: int, min_chunk_chars: int) -> int:
    if preferred_end - start <= min_chunk_chars:
        return preferred_end

    search_start = max(start + min_chunk_chars, preferred_end - SMART_CUT_WINDOW)
    if search_start >= preferred_end:
        return preferred_end

    segment = text[search_start:preferred_end]

    para = segment.rfind("\n\n")
    if para >= 0:
        return search_start + para + 2

    punct = max(segment.rfind(ch) for ch in ".?!")
    if punct >= 0:
        return search_start + punct + 1

    line = segment.rfind("\n")
    if line >= 0:
        return search_start + line + 1

    return preferred_end


def _fixed_spans(text: str, settings: RuntimeSettings) -> List[Tuple[int, int]]:
    size = min(settings.chunk_size_chars, settings.max_chunk_chars)
    size = max(size, settings.min_chunk_chars)
    overlap = min(settings.chunk_overlap_chars, size - 1)
    step = max(1, size - overlap)
    min_chars = settings.min_chunk_chars

    spans: List[Tuple[int, int]] = []
    pos = 0
    while pos < len(text):
        if len(text) - pos < min_chars and pos > 0:
            break

        preferred_end = min(len(text), pos + size)
        end = find_smart_cut(text, pos, preferred_end, min_chars)
        if end <= pos:
            end = preferred_end

        if len(text[pos:end].strip()) >= min_chars:
            spans.append((pos, end))

        if end >= len(text):
            break

        nxt = end - overlap
        pos = nxt if nxt > pos else pos + step

    # nothing reached min_chars: keep the whole non-blank text as one chunk
    if not spans and text.strip():
        spans.append((0, len(text)))
    return spans


def chunk_fixed(
    doc: Document,
    settings: RuntimeSettings,
    section_title: str = NO_SECTION,
    base_offset: int = 0,
    text: Optional[str] = None,
    strategy: ChunkStrategy = ChunkStrategy.FIXED_OVERLAP,
) -> List[Chunk]:
    """Window-split `text` (default: the whole document); offsets shifted by base_offset."""
    text = doc.text if text is None else text
    if not text.strip():
        return []
    chunks = [
        _make_chunk(doc, settings, section_title, text[s:e], base_offset + s, strategy)
        for s, e in _fixed_spans(text, settings)
    ]
    return _reindex(chunks)


# ---------------------------
# Markdown aware
# ---------------------------

def _is_fence(line: str) -> bool:
    return line.startswith("```") or line.startswith("~~~")


def _parse_heading(line: str) -> Optional[str]:
    if len(line) < 3 or line[0] != "#":
        return None
    level = len(line) - len(line.lstrip("#"))
    if level > 3 or level >= len(line) or line[level] != " ":
        return None
    title = line[level + 1 :].strip()
    return title or None


def extract_headings(markdown: str) -> List[Tuple[int, str]]:
    """(line start offset, title) for each heading outside fenced code."""
    headings: List[Tuple[int, str]] = []
    in_fence = False
    i = 0
    while i < len(markdown):
        nl = markdown.find("\n", i)
        line_end = nl if nl >= 0 else len(markdown)
        stripped = markdown[i:line_end].lstrip()

        if _is_fence(stripped):
            in_fence = not in_fence
        elif not in_fence:
            title = _parse_heading(stripped)
            if title:
                headings.append((i, title))

        i = line_end + 1 if nl >= 0 else len(markdown)
    return headings


def _chunk_section(
    doc: Document,
    settings: RuntimeSettings,
    section_text: str,
    section_title: str,
    start: int,
) -> List[Chunk]:
    trimmed = len(section_text.strip())
    # short sections are dropped, not merged
    if trimmed == 0 or trimmed < settings.min_chunk_chars:
        return []
    if len(section_text) <= settings.max_chunk_chars:
        return [
            _make_chunk(doc, settings, section_title, section_text, start, ChunkStrategy.MARKDOWN_AWARE)
        ]
    return chunk_fixed(
        doc,
        settings,
        section_title=section_title,
        base_offset=start,
        text=section_text,
        strategy=ChunkStrategy.MARKDOWN_AWARE,
    )


def chunk_markdown_aware(doc: Document, settings: RuntimeSettings) -> List[Chunk]:
    text = doc.text
    headings = extract_headings(text)
    if not headings:
        return chunk_fixed(doc, settings, section_title=DOCUMENT_SECTION, strategy=ChunkStrategy.MARKDOWN_AWARE)

    out: List[Chunk] = []
    first = headings[0][0]
    if first > 0 and text[:first].strip():
        out.extend(_chunk_section(doc, settings, text[:first], PREAMBLE_SECTION, 0))

    for n, (start, title) in enumerate(headings):
        end = headings[n + 1][0] if n + 1 < len(headings) else len(text)
        if end <= start:
            continue
        out.extend(_chunk_section(doc, settings, text[start:end], title, start))

    return _reindex(out)
