from __future__ import annotations

import logging
import threading
from pathlib import Path
from statistics import mean
from typing import List, Optional

from llm.base import LLM

from ..errors import CollaboratorError, ConfigError, check_cancelled
from ..index.schema import Chunk, IngestStats, Point
from ..index.store import VectorStore, chunk_to_payload
from ..settings import RuntimeSettings
from .chunker import chunk_document, validate_chunking
from .md_txt import load_documents

logger = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 24


class IngestionService:
    """
    Loads markdown documents, chunks them, embeds in sequential batches and
    replaces the collection contents.

    The collection is dropped and recreated only after the first embedding
    batch succeeds, so an early failure or cancel leaves the previous index
    in place.
    """

    def __init__(
        self,
        llm: LLM,
        store: VectorStore,
        data_dir: str | Path,
        batch_size: int = EMBED_BATCH_SIZE,
    ) -> None:
        self.llm = llm
        self.store = store
        self.data_dir = Path(data_dir)
        self.batch_size = max(1, int(batch_size))

    def build_chunks(self, settings: RuntimeSettings) -> tuple[int, List[Chunk]]:
        validate_chunking(settings)
        docs = load_documents(self.data_dir)
        chunks: List[Chunk] = []
        for doc in docs:
            chunks.extend(chunk_document(doc, settings))
        return len(docs), chunks

    def _embed_batch(self, chunks: List[Chunk]) -> List[List[float]]:
        vectors = self.llm.embed([c.text for c in chunks])
        if len(vectors) != len(chunks):
            raise CollaboratorError(
                f"unexpected embedding count: sent {len(chunks)}, got {len(vectors)}"
            )
        return vectors

    def _recreate(self, dimension: int) -> None:
        self.store.delete_collection()
        self.store.create_collection(dimension)

    def reset_collection(
        self, settings: RuntimeSettings, cancel: Optional[threading.Event] = None
    ) -> int:
        """Drop and recreate the collection; returns the probed vector size."""
        _, chunks = self.build_chunks(settings)
        if not chunks:
            raise ConfigError("no chunks available to probe the embedding dimension")

        check_cancelled(cancel, "before embedding probe")
        logger.info("Probing embedding dimension ...")
        dim = len(self.llm.embed_one(chunks[0].text))

        check_cancelled(cancel, "before collection reset")
        self._recreate(dim)
        logger.info("Collection recreated (vector size=%d).", dim)
        return dim

    def ingest(
        self, settings: RuntimeSettings, cancel: Optional[threading.Event] = None
    ) -> IngestStats:
        n_docs, chunks = self.build_chunks(settings)
        if not chunks:
            raise ConfigError("chunking produced no chunks to ingest")

        logger.info("Ingesting %d docs and %d chunks ...", n_docs, len(chunks))

        points: List[Point] = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            check_cancelled(cancel, f"before batch starting at chunk {start + 1}")
            logger.info(
                "Embedding chunks %d-%d/%d ...", start + 1, start + len(batch), len(chunks)
            )
            vectors = self._embed_batch(batch)

            if start == 0:
                # Recreate on every ingest so stale points never survive a smaller corpus.
                check_cancelled(cancel, "before collection reset")
                self._recreate(len(vectors[0]))

            for offset, (chunk, vec) in enumerate(zip(batch, vectors)):
                points.append(Point(id=start + offset + 1, vector=vec, payload=chunk_to_payload(chunk)))

        check_cancelled(cancel, "before upsert")
        self.store.upsert(points)

        lengths = [len(c.text) for c in chunks]
        return IngestStats(
            documents=n_docs,
            chunks=len(chunks),
            min_chars=min(lengths),
            avg_chars=float(mean(lengths)),
            max_chars=max(lengths),
        )
