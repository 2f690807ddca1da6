from .base import LLM
from .ollama import OllamaLLM, _normalize_endpoint


def make_llm(
    backend: str = "ollama",
    model: str = "llama3.1:8b",
    embed_model: str = "bge-m3",
    endpoint: str = "http://localhost:11434",
    offline: bool = True,
    keep_alive: str | None = None,
) -> LLM:
    backend = (backend or "ollama").lower()
    endpoint = _normalize_endpoint(endpoint)

    # Offline guard: only allow localhost endpoints
    if offline and not (
        endpoint.startswith("http://localhost") or endpoint.startswith("http://127.0.0.1")
    ):
        raise RuntimeError(f"Offline mode: refusing non-local endpoint: {endpoint}")

    if backend == "ollama":
        return OllamaLLM(model=model, embed_model=embed_model, endpoint=endpoint, keep_alive=keep_alive)

    raise RuntimeError(f"Unsupported backend: {backend}")
