from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from llm.base import LLM
from llm.factory import make_llm

from .answer.orchestrator import GroundedAnswerService
from .errors import ConfigError
from .index.memory import InMemoryStore
from .index.qdrant import QdrantStore
from .index.schema import GroundedAnswerResult
from .index.store import VectorStore
from .ingest.pipeline import IngestionService
from .retrieve.retriever import Retriever
from .settings import AppConfig, RuntimeSettings, load_app_config
from .utils.log import Logger, answer_trace

__all__ = ["Services", "build_services", "ask", "load_app_config"]


@dataclass
class Services:
    config: AppConfig
    llm: LLM
    store: VectorStore
    ingestion: IngestionService
    retriever: Retriever
    answers: GroundedAnswerService


def make_store(config: AppConfig) -> VectorStore:
    if config.store == "qdrant":
        return QdrantStore(config.collection, base_url=config.qdrant_url, timeout=config.http_timeout_seconds)
    if config.store == "memory":
        return InMemoryStore()
    raise ConfigError(f"unsupported vector store: {config.store!r}")


def build_services(
    config: AppConfig,
    llm: Optional[LLM] = None,
    store: Optional[VectorStore] = None,
    allow_remote: bool = False,
) -> Services:
    llm = llm or make_llm(
        model=config.chat_model,
        embed_model=config.embed_model,
        endpoint=config.ollama_endpoint,
        offline=config.offline and not allow_remote,
        keep_alive=config.keep_alive,
    )
    store = store or make_store(config)
    retriever = Retriever(llm, store)
    return Services(
        config=config,
        llm=llm,
        store=store,
        ingestion=IngestionService(llm, store, config.data_dir),
        retriever=retriever,
        answers=GroundedAnswerService(retriever, llm),
    )


def ask(
    question: str,
    services: Services,
    settings: RuntimeSettings,
    cancel: Optional[threading.Event] = None,
) -> GroundedAnswerResult:
    """Grounded answer plus one line in <log_dir>/queries.log.jsonl."""
    t0 = time.perf_counter()
    result = services.answers.ask(question, settings, cancel=cancel)
    trace = answer_trace(question, result)
    trace["total_ms"] = int((time.perf_counter() - t0) * 1000)
    Logger(Path(services.config.log_dir) / "queries.log.jsonl").write(trace)
    return result
