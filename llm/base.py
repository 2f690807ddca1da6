from abc import ABC, abstractmethod
from typing import List


class CollaboratorError(RuntimeError):
    """Malformed or unusable reply from an external service (Ollama, Qdrant)."""


class LLM(ABC):
    @abstractmethod
    def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        top_p: float = 0.9,
        num_ctx: int = 8192,
    ) -> str:
        """Return the assistant text; never empty."""
        ...

    @abstractmethod
    def embed(self, texts: List[str]) -> List[List[float]]:
        """One vector per input text, in input order."""
        ...

    def embed_one(self, text: str) -> List[float]:
        return self.embed([text])[0]
