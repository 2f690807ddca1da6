# llm/ollama.py
from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import requests

from .base import LLM, CollaboratorError

DEFAULT_OLLAMA = "http://localhost:11434"


def _timeouts() -> tuple[float, float]:
    """Return (connect_timeout, read_timeout) in seconds; env-overridable."""
    ct = float(os.getenv("OLLAMA_CONNECT_TIMEOUT", "10"))
    rt = float(os.getenv("OLLAMA_READ_TIMEOUT", "600"))
    return (ct, rt)


def _normalize_endpoint(ep: Optional[str]) -> str:
    """endpoint > OLLAMA_HOST > default; ensure scheme; strip trailing slash."""
    cand = (ep or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA).strip()
    if not re.match(r"^https?://", cand):
        cand = "http://" + cand
    return cand.rstrip("/")


class OllamaLLM(LLM):
    """
    Ollama client for both chat generation and embeddings.

        llm = OllamaLLM(model="llama3.1:8b", embed_model="bge-m3", keep_alive="30m")
        llm.chat(system_prompt, user_prompt, temperature=0.2, top_p=0.9, num_ctx=8192)
        llm.embed(["text a", "text b"])

    HTTP failures surface as requests exceptions (raise_for_status); replies
    that parse but carry no usable content raise CollaboratorError.
    """

    def __init__(
        self,
        model: str,
        embed_model: str = "bge-m3",
        endpoint: Optional[str] = None,
        keep_alive: Optional[str] = None,
        **_: Any,
    ) -> None:
        self.model = model
        self.embed_model = embed_model
        self.base = _normalize_endpoint(endpoint)
        self.keep_alive = keep_alive

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive
        r = requests.post(f"{self.base}{path}", json=payload, timeout=_timeouts())
        if r.status_code == 404:
            # Ollama answers 404 for unknown models as well as unknown routes
            raise CollaboratorError(
                f"Ollama returned 404 on {path}: {r.text[:300]} (try: ollama pull {payload.get('model')})"
            )
        r.raise_for_status()
        try:
            data = r.json()
        except ValueError as e:
            raise CollaboratorError(f"invalid JSON from Ollama {path}") from e
        if not isinstance(data, dict):
            raise CollaboratorError(f"unexpected reply shape from Ollama {path}")
        return data

    def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        top_p: float = 0.9,
        num_ctx: int = 8192,
    ) -> str:
        """Call /api/chat once (non-streaming) and return assistant text content."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {
                "temperature": float(temperature),
                "top_p": float(top_p),
                "num_ctx": int(num_ctx),
            },
        }
        data = self._post("/api/chat", payload)
        # Common shapes:
        #  - {"message":{"role":"assistant","content":"..."}}
        #  - {"response":"..."} (older/alt shape)
        msg = data.get("message", {})
        if isinstance(msg, dict) and "content" in msg:
            content = msg.get("content") or ""
        else:
            content = data.get("response") or ""
        if not str(content).strip():
            raise CollaboratorError("Ollama /api/chat returned no content")
        return str(content).strip()

    def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            raise ValueError("embed() needs at least one text")
        data = self._post("/api/embed", {"model": self.embed_model, "input": list(texts)})
        if isinstance(data.get("embeddings"), list) and data["embeddings"]:
            vectors = data["embeddings"]
        elif isinstance(data.get("embedding"), list) and data["embedding"]:
            vectors = [data["embedding"]]
        else:
            raise CollaboratorError("Ollama returned no valid 'embeddings'")
        if len(vectors) != len(texts):
            raise CollaboratorError(
                f"embedding count mismatch: sent {len(texts)}, got {len(vectors)}"
            )
        return [[float(x) for x in v] for v in vectors]
