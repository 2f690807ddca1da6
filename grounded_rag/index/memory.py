from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..errors import CollaboratorError
from .schema import Point, RetrievedChunk
from .store import VectorStore, retrieved_from_payload


class InMemoryStore(VectorStore):
    """In-process collection with cosine search; for tests and small offline runs."""

    def __init__(self) -> None:
        self.dimension: Optional[int] = None
        self._points: Dict[int, Point] = {}

    @property
    def exists(self) -> bool:
        return self.dimension is not None

    def delete_collection(self) -> None:
        self.dimension = None
        self._points = {}

    def create_collection(self, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = int(dimension)
        self._points = {}

    def count(self) -> int:
        return len(self._points)

    def upsert(self, points: List[Point]) -> None:
        if not self.exists:
            raise CollaboratorError("collection does not exist")
        for p in points:
            if len(p.vector) != self.dimension:
                raise CollaboratorError(
                    f"vector size {len(p.vector)} does not match collection size {self.dimension}"
                )
            self._points[p.id] = p

    def payloads(self) -> List[Dict[str, Any]]:
        return [self._points[k].payload for k in sorted(self._points)]

    def search(self, vector: Sequence[float], top_k: int) -> List[RetrievedChunk]:
        if not self._points:
            return []
        ids = sorted(self._points)
        M = np.asarray([self._points[i].vector for i in ids], dtype="float32")
        q = np.asarray(vector, dtype="float32")
        norms = np.linalg.norm(M, axis=1) * np.linalg.norm(q)
        sims = np.divide(M @ q, norms, out=np.zeros(len(ids), dtype="float32"), where=norms > 0)
        order = np.argsort(-sims, kind="stable")[: max(0, int(top_k))]
        return [
            retrieved_from_payload(float(sims[i]), self._points[ids[i]].payload) for i in order.tolist()
        ]
