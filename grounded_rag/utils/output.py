from __future__ import annotations

import datetime
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..index.schema import GroundedAnswerResult

FORMATS = ("json", "md", "txt")


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _slug(s: str, max_len: int = 60) -> str:
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9\-\s_]+", "", s)
    s = re.sub(r"[\s_]+", "-", s)
    return s[:max_len].strip("-") or "question"


def infer_format(out_path: Optional[str], fmt: Optional[str]) -> str:
    if fmt:
        return fmt.lower()
    if out_path:
        ext = Path(out_path).suffix.lower().lstrip(".")
        if ext in FORMATS:
            return ext
    return "json"


def ensure_outpath(out_path: Optional[str], fmt: str, save_dir: Optional[str], question: str) -> Path:
    if out_path:
        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base_dir = Path(save_dir or "outputs")
    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir / f"{_timestamp()}_{_slug(question)}.{fmt}"


def as_dict(question: str, result: GroundedAnswerResult) -> Dict[str, Any]:
    return {"question": question, **result.model_dump(mode="json")}


def _score_lines(obj: Dict[str, Any]) -> List[str]:
    return [
        f"outcome: {obj['outcome']}",
        f"top1_score: {obj['top1_score']:.4f} | gap(top1-top2): {obj['gap_top1_top2']:.4f}"
        + (" | AMBIGUOUS" if obj["is_ambiguous"] else ""),
    ]


def as_markdown(obj: Dict[str, Any]) -> str:
    lines: List[str] = [f"# {obj['question']}", "", obj["answer_text"].strip(), ""]
    if obj["citations"]:
        lines.append("## Citations")
        lines.extend(f"- `{c}`" for c in obj["citations"])
        lines.append("")
    lines.append("## Retrieval")
    lines.extend(f"- {ln}" for ln in _score_lines(obj))
    for i, r in enumerate(obj["retrieved"], start=1):
        lines.append(f"{i}. score={r['score']:.4f} | [{r['doc_id']}|{r['section_title']}|{r['chunk_index']}]")
    return "\n".join(lines).strip() + "\n"


def as_text(obj: Dict[str, Any]) -> str:
    lines: List[str] = [f"QUESTION: {obj['question']}", "", obj["answer_text"].strip(), ""]
    if obj["citations"]:
        lines.append("CITATIONS: " + ", ".join(obj["citations"]))
    lines.extend(_score_lines(obj))
    return "\n".join(lines).strip() + "\n"


def write_output(
    question: str,
    result: GroundedAnswerResult,
    out_path: Optional[str] = None,
    fmt: Optional[str] = None,
    save_dir: Optional[str] = None,
) -> Path:
    fmt2 = infer_format(out_path, fmt)
    if fmt2 not in FORMATS:
        raise ValueError(f"Unsupported format: {fmt2}")
    target = ensure_outpath(out_path, fmt2, save_dir, question)
    obj = as_dict(question, result)
    if fmt2 == "json":
        target.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
    elif fmt2 == "md":
        target.write_text(as_markdown(obj), encoding="utf-8")
    else:
        target.write_text(as_text(obj), encoding="utf-8")
    return target
