from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..errors import CollaboratorError
from .schema import Point, RetrievedChunk
from .store import VectorStore, retrieved_from_payload

logger = logging.getLogger(__name__)

DEFAULT_QDRANT = "http://localhost:6333"


class QdrantStore(VectorStore):
    """
    Qdrant over its REST API. One instance is bound to one collection.

    Non-2xx replies raise requests.HTTPError except where Qdrant's 404 has a
    defined meaning here (count -> 0, delete -> already gone).
    """

    def __init__(
        self,
        collection: str,
        base_url: str = DEFAULT_QDRANT,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.collection = collection
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, suffix: str = "") -> str:
        return f"{self.base}/collections/{self.collection}{suffix}"

    def _json(self, r: requests.Response) -> Dict[str, Any]:
        try:
            data = r.json()
        except ValueError as e:
            raise CollaboratorError("invalid JSON from Qdrant") from e
        if not isinstance(data, dict):
            raise CollaboratorError("unexpected reply shape from Qdrant")
        return data

    def delete_collection(self) -> None:
        r = self.session.delete(self._url(), timeout=self.timeout)
        if r.status_code == 404:
            return
        r.raise_for_status()
        logger.debug("deleted collection %s", self.collection)

    def create_collection(self, dimension: int) -> None:
        body = {"vectors": {"size": int(dimension), "distance": "Cosine"}}
        r = self.session.put(self._url(), json=body, timeout=self.timeout)
        r.raise_for_status()
        logger.debug("created collection %s (size=%d)", self.collection, dimension)

    def count(self) -> int:
        r = self.session.post(self._url("/points/count"), json={"exact": True}, timeout=self.timeout)
        if r.status_code == 404:
            return 0
        r.raise_for_status()
        result = self._json(r).get("result") or {}
        return int(result.get("count") or 0)

    def upsert(self, points: List[Point]) -> None:
        if not points:
            return
        body = {"points": [p.model_dump() for p in points]}
        r = self.session.put(
            self._url("/points"), params={"wait": "true"}, json=body, timeout=self.timeout
        )
        r.raise_for_status()

    def search(self, vector: Sequence[float], top_k: int) -> List[RetrievedChunk]:
        body = {"vector": [float(x) for x in vector], "limit": int(top_k), "with_payload": True}
        r = self.session.post(self._url("/points/search"), json=body, timeout=self.timeout)
        r.raise_for_status()
        result = self._json(r).get("result") or []
        if not isinstance(result, list):
            raise CollaboratorError("Qdrant search result is not a list")
        return [retrieved_from_payload(item.get("score", 0.0), item.get("payload")) for item in result]
