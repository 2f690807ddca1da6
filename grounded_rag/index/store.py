from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from .schema import Chunk, Point, RetrievedChunk


class VectorStore(ABC):
    """One named collection of chunk vectors with cosine similarity."""

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def search(self, vector: Sequence[float], top_k: int) -> List[RetrievedChunk]:
        """Ranked by descending score."""
        ...

    @abstractmethod
    def upsert(self, points: List[Point]) -> None:
        ...

    @abstractmethod
    def create_collection(self, dimension: int) -> None:
        ...

    @abstractmethod
    def delete_collection(self) -> None:
        """Idempotent: a missing collection is not an error."""
        ...


def chunk_to_payload(chunk: Chunk) -> Dict[str, Any]:
    return {
        "doc_id": chunk.doc_id,
        "doc_title": chunk.doc_title,
        "section_title": chunk.section_title,
        "chunk_id": chunk.chunk_id,
        "chunk_index": chunk.chunk_index,
        "start_char": chunk.start_char,
        "end_char": chunk.end_char,
        "chunk_text": chunk.text,
        "strategy": chunk.strategy.value,
        "chunk_size": chunk.chunk_size,
        "overlap": chunk.overlap,
    }


def _as_int(v: Any, default: int = -1) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def retrieved_from_payload(score: float, payload: Dict[str, Any] | None) -> RetrievedChunk:
    p = payload or {}
    return RetrievedChunk(
        score=float(score),
        doc_id=str(p.get("doc_id") or ""),
        doc_title=str(p.get("doc_title") or ""),
        section_title=str(p.get("section_title") or ""),
        chunk_id=str(p.get("chunk_id") or ""),
        chunk_index=_as_int(p.get("chunk_index")),
        text=str(p.get("chunk_text") or ""),
    )
