from pathlib import Path
import json

from ..index.schema import GroundedAnswerResult


class Logger:
    """Append-only JSON-lines trace file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, obj: dict):
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")


def answer_trace(question: str, result: GroundedAnswerResult) -> dict:
    return {
        "question": question,
        "outcome": result.outcome.value,
        "reason": result.reason,
        "attempts": result.attempts,
        "top1_score": result.top1_score,
        "gap_top1_top2": result.gap_top1_top2,
        "is_ambiguous": result.is_ambiguous,
        "citations": result.citations,
        "retrieved": [{"chunk_id": r.chunk_id, "score": r.score} for r in result.retrieved],
        "context_ids": [r.chunk_id for r in result.context],
    }
