from __future__ import annotations

from typing import Sequence

from ..index.schema import GateResult, RetrievedChunk


def gate(results: Sequence[RetrievedChunk], min_score: float, min_gap: float) -> GateResult:
    """
    Evidence/ambiguity decision over already-sorted results.

    With a single hit the gap is that hit's own score: there is no competing
    candidate, so it counts as unambiguous unless the score itself is below
    min_gap. No results means no evidence and no ambiguity.
    """
    if not results:
        return GateResult(has_evidence=False, top1=0.0, gap_top1_top2=0.0, is_ambiguous=False)

    top1 = results[0].score
    gap = top1 - results[1].score if len(results) > 1 else top1
    return GateResult(
        has_evidence=top1 >= min_score,
        top1=top1,
        gap_top1_top2=gap,
        is_ambiguous=gap < min_gap,
    )
