from __future__ import annotations

import logging
import threading
from typing import List, Optional

from llm.base import LLM

from ..errors import check_cancelled
from ..index.schema import RetrievedChunk
from ..index.store import VectorStore

logger = logging.getLogger(__name__)


class Retriever:
    def __init__(self, embedder: LLM, store: VectorStore) -> None:
        self.embedder = embedder
        self.store = store

    def retrieve(
        self, query: str, top_k: int, cancel: Optional[threading.Event] = None
    ) -> List[RetrievedChunk]:
        """
        Nearest chunks for `query`, in the store's order (descending score).
        An empty collection yields [] without calling the embedder.
        """
        check_cancelled(cancel, "before count")
        if self.store.count() == 0:
            logger.info("Collection is empty; nothing to retrieve.")
            return []

        check_cancelled(cancel, "before query embedding")
        vector = self.embedder.embed_one(query)

        check_cancelled(cancel, "before search")
        hits = self.store.search(vector, top_k)
        logger.debug("retrieved %d chunks: %s", len(hits), [h.chunk_id for h in hits])
        return hits
