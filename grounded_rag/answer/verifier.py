"""
Local grounding check for generated answers.

Contract: every non-blank line is a bullet ("- " or "* "), every bullet
carries at least one citation token, and every token names a chunk that was
actually placed in the generator's context:

    - Refunds are processed in 5 days. [D001|Refund Policy|c3]
"""

from __future__ import annotations

import re
from typing import List, Sequence

from ..index.schema import RetrievedChunk, VerificationResult

CITATION_RE = re.compile(r"\[D[^|\[\]]+\|[^|\]]+\|c\d+\]")
BULLET_PREFIXES = ("- ", "* ")


def build_citation(doc_id: str, section_title: str, chunk_index: int) -> str:
    return f"[D{doc_id}|{section_title}|c{chunk_index}]"


def allowed_citations(chunks: Sequence[RetrievedChunk]) -> set[str]:
    return {build_citation(c.doc_id, c.section_title, c.chunk_index) for c in chunks}


def verify(answer_text: str, context: Sequence[RetrievedChunk]) -> VerificationResult:
    lines = [ln.strip() for ln in (answer_text or "").replace("\r\n", "\n").split("\n")]
    lines = [ln for ln in lines if ln]
    if not lines:
        return VerificationResult.invalid("empty answer")

    allowed = allowed_citations(context)
    found: List[str] = []
    for ln in lines:
        if not ln.startswith(BULLET_PREFIXES):
            return VerificationResult.invalid("contains non-bullet lines")

        tokens = CITATION_RE.findall(ln)
        if not tokens:
            return VerificationResult.invalid("bullet without citation")

        for tok in tokens:
            if tok not in allowed:
                return VerificationResult.invalid(f"invalid citation: {tok}")
        found.extend(tokens)

    seen, citations = set(), []
    for tok in found:
        key = tok.casefold()
        if key not in seen:
            seen.add(key)
            citations.append(tok)
    return VerificationResult.valid(citations)
