from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ChunkStrategy(str, Enum):
    FIXED_OVERLAP = "fixed_overlap"
    MARKDOWN_AWARE = "markdown_aware"


class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    doc_id: str
    title: str
    text: str
    source_path: str


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    doc_id: str
    doc_title: str
    section_title: str
    chunk_id: str = ""         # assigned by the reindex pass
    chunk_index: int = -1
    start_char: int            # absolute offsets into Document.text
    end_char: int
    text: str
    strategy: ChunkStrategy
    chunk_size: int            # configured, not effective
    overlap: int


class RetrievedChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float
    doc_id: str
    doc_title: str = ""
    section_title: str
    chunk_id: str
    chunk_index: int
    text: str


class Point(BaseModel):
    id: int
    vector: List[float]
    payload: Dict[str, Any]


class IngestStats(BaseModel):
    documents: int
    chunks: int
    min_chars: int
    avg_chars: float
    max_chars: int


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_evidence: bool
    top1: float
    gap_top1_top2: float
    is_ambiguous: bool


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    reason: Optional[str] = None
    citations: List[str] = []

    @classmethod
    def invalid(cls, reason: str) -> "VerificationResult":
        return cls(is_valid=False, reason=reason)

    @classmethod
    def valid(cls, citations: List[str]) -> "VerificationResult":
        return cls(is_valid=True, citations=citations)


class AnswerOutcome(str, Enum):
    NO_EVIDENCE = "no_evidence"
    VALID = "valid"
    INVALID = "invalid"


class GroundedAnswerResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    used_generator: bool
    is_valid_grounded_output: bool
    answer_text: str
    retrieved: List[RetrievedChunk] = []
    citations: List[str] = []
    top1_score: float = 0.0
    gap_top1_top2: float = 0.0
    is_ambiguous: bool = False
    # diagnostics
    outcome: AnswerOutcome
    reason: Optional[str] = None
    attempts: int = 0
    context: List[RetrievedChunk] = []
