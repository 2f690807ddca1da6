from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from ..errors import ConfigError
from ..index.schema import Document


def first_markdown_title(text: str) -> Optional[str]:
    for ln in text.splitlines():
        s = ln.strip()
        if s.startswith("# "):
            return s[2:].strip()
    return None


def parse_md(path: Path) -> Optional[Document]:
    text = path.read_text(encoding="utf-8", errors="ignore")
    # offsets are relative to the LF-normalized text
    text = text.replace("\r\n", "\n")
    if not text.strip():
        return None
    return Document(
        doc_id=path.stem.upper(),
        title=first_markdown_title(text) or path.stem,
        text=text,
        source_path=str(path),
    )


def load_documents(data_dir: str | Path) -> List[Document]:
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise ConfigError(f"data directory not found: {data_dir.resolve()}")

    files = sorted((p for p in data_dir.glob("*.md") if p.is_file()), key=lambda p: p.name.lower())
    if not files:
        raise ConfigError(f"no .md files in {data_dir.resolve()}")

    docs = [d for d in (parse_md(f) for f in files) if d is not None]
    if not docs:
        raise ConfigError(f"all documents in {data_dir.resolve()} are empty")
    return docs
