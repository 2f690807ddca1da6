import sys
from pathlib import Path

import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]

# Ensure repo root is on sys.path so `import cli` and the `llm` package work.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from grounded_rag.index.schema import RetrievedChunk  # noqa: E402
from llm.base import LLM  # noqa: E402


class FakeLLM(LLM):
    """Scripted chat replies, deterministic embeddings, call counters."""

    def __init__(self, replies=None, dim=4, vectors=None):
        self.replies = list(replies or [])
        self.dim = dim
        self.vectors = dict(vectors or {})
        self.chat_calls = []
        self.embed_calls = []

    def chat(self, system_prompt, user_prompt, temperature=0.2, top_p=0.9, num_ctx=8192):
        self.chat_calls.append({"system": system_prompt, "user": user_prompt})
        if not self.replies:
            raise AssertionError("unexpected chat call")
        return self.replies.pop(0)

    def _vector(self, text):
        if text in self.vectors:
            return list(self.vectors[text])
        seed = sum(ord(ch) for ch in text) or 1
        return [float((seed * (i + 3)) % 17 + 1) for i in range(self.dim)]

    def embed(self, texts):
        self.embed_calls.append(list(texts))
        return [self._vector(t) for t in texts]


class FakeRetriever:
    def __init__(self, hits):
        self.hits = list(hits)
        self.calls = 0

    def retrieve(self, query, top_k, cancel=None):
        self.calls += 1
        return self.hits[:top_k]


def make_hit(score, doc_id="001", section="Refund Policy", index=0, text="Refunds are processed in 5 days."):
    return RetrievedChunk(
        score=score,
        doc_id=doc_id,
        doc_title="Policies",
        section_title=section,
        chunk_id=f"{doc_id}_chunk_{index:04d}",
        chunk_index=index,
        text=text,
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def write_docs(tmp_path):
    def _write(files):
        data = tmp_path / "data"
        data.mkdir(exist_ok=True)
        for name, text in files.items():
            (data / name).write_text(text, encoding="utf-8")
        return data

    return _write
