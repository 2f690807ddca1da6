from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError
from .index.schema import ChunkStrategy


class RuntimeSettings(BaseModel):
    """
    Session-tunable knobs. Frozen: the interactive shell swaps in a new value
    via `updated()` and every operation receives the snapshot current at call time.
    """

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(8, gt=0)
    min_score: float = 0.60
    min_gap: float = 0.02
    max_context_chars_budget: int = Field(12_000, gt=0)
    max_chunk_chars_for_prompt: int = Field(1_600, gt=0)

    chunk_strategy: ChunkStrategy = ChunkStrategy.MARKDOWN_AWARE
    chunk_size_chars: int = Field(900, gt=0)
    chunk_overlap_chars: int = Field(140, ge=0)
    min_chunk_chars: int = Field(220, gt=0)
    max_chunk_chars: int = Field(1_200, gt=0)

    chat_temperature: float = 0.2
    chat_top_p: float = 0.9
    chat_num_ctx: int = Field(8_192, gt=0)
    show_debug: bool = True

    @model_validator(mode="after")
    def _check_chunking(self) -> "RuntimeSettings":
        if self.chunk_overlap_chars >= self.chunk_size_chars:
            raise ValueError("chunk_overlap_chars must be smaller than chunk_size_chars")
        if self.min_chunk_chars > self.max_chunk_chars:
            raise ValueError("min_chunk_chars must not exceed max_chunk_chars")
        return self

    @classmethod
    def build(cls, **values: Any) -> "RuntimeSettings":
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(_first_error(e)) from e

    def updated(self, **changes: Any) -> "RuntimeSettings":
        return self.build(**{**self.model_dump(), **changes})


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    ollama_endpoint: str = "http://localhost:11434"
    embed_model: str = "bge-m3"
    chat_model: str = "llama3.1:8b"
    keep_alive: Optional[str] = None
    offline: bool = True
    store: str = "qdrant"            # qdrant | memory
    qdrant_url: str = "http://localhost:6333"
    collection: str = "grounded_rag"
    http_timeout_seconds: int = 60
    data_dir: str = "data"
    log_dir: str = "logs"
    runtime: RuntimeSettings = RuntimeSettings()


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(x) for x in err.get("loc", ())) or "settings"
    return f"{loc}: {err.get('msg', 'invalid value')}"


def parse_float(raw: Any, key: str) -> float:
    """Accepts `0.6` and `0,6`."""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    try:
        return float(str(raw).strip().replace(",", "."))
    except ValueError:
        raise ConfigError(f"{key} invalid: {raw!r}") from None


def parse_int(raw: Any, key: str) -> int:
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{key} invalid: {raw!r} (expected an integer)") from None


def parse_bool(raw: Any, key: str) -> bool:
    if isinstance(raw, bool):
        return raw
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "on"}:
        return True
    if s in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{key} invalid: {raw!r} (use true/false)")


def parse_strategy(raw: Any, key: str = "CHUNK_STRATEGY") -> ChunkStrategy:
    s = str(raw).strip().lower().replace("-", "_")
    aliases = {"markdownaware": "markdown_aware", "fixedsizewithoverlap": "fixed_overlap"}
    s = aliases.get(s, s)
    try:
        return ChunkStrategy(s)
    except ValueError:
        raise ConfigError(f"{key} invalid: {raw!r}") from None


# env key -> (yaml section, yaml key, target field, parser)
_RUNTIME_KEYS: Tuple[Tuple[str, str, str, str, Callable[[Any, str], Any]], ...] = (
    ("TOP_K", "retrieval", "top_k", "top_k", parse_int),
    ("MIN_RETRIEVAL_SCORE", "retrieval", "min_score", "min_score", parse_float),
    ("MIN_RETRIEVAL_GAP", "retrieval", "min_gap", "min_gap", parse_float),
    ("MAX_CONTEXT_CHARS_BUDGET", "answer", "max_context_chars_budget", "max_context_chars_budget", parse_int),
    ("MAX_CHUNK_CHARS_FOR_PROMPT", "answer", "max_chunk_chars_for_prompt", "max_chunk_chars_for_prompt", parse_int),
    ("SHOW_DEBUG", "answer", "show_debug", "show_debug", parse_bool),
    ("CHUNK_STRATEGY", "chunking", "strategy", "chunk_strategy", parse_strategy),
    ("CHUNK_SIZE_CHARS", "chunking", "chunk_size_chars", "chunk_size_chars", parse_int),
    ("CHUNK_OVERLAP_CHARS", "chunking", "chunk_overlap_chars", "chunk_overlap_chars", parse_int),
    ("MIN_CHUNK_CHARS", "chunking", "min_chunk_chars", "min_chunk_chars", parse_int),
    ("MAX_CHUNK_CHARS", "chunking", "max_chunk_chars", "max_chunk_chars", parse_int),
    ("CHAT_TEMPERATURE", "chat", "temperature", "chat_temperature", parse_float),
    ("CHAT_TOP_P", "chat", "top_p", "chat_top_p", parse_float),
    ("CHAT_NUM_CTX", "chat", "num_ctx", "chat_num_ctx", parse_int),
)

_APP_KEYS: Tuple[Tuple[str, str, str, str, Callable[[Any, str], Any]], ...] = (
    ("OLLAMA_HOST", "ollama", "endpoint", "ollama_endpoint", lambda v, k: str(v)),
    ("OLLAMA_EMBED_MODEL", "ollama", "embed_model", "embed_model", lambda v, k: str(v)),
    ("OLLAMA_CHAT_MODEL", "ollama", "chat_model", "chat_model", lambda v, k: str(v)),
    ("OLLAMA_KEEP_ALIVE", "ollama", "keep_alive", "keep_alive", lambda v, k: str(v)),
    ("OLLAMA_OFFLINE", "ollama", "offline", "offline", parse_bool),
    ("VECTOR_STORE", "app", "store", "store", lambda v, k: str(v).strip().lower()),
    ("QDRANT_BASE_URL", "qdrant", "url", "qdrant_url", lambda v, k: str(v)),
    ("QDRANT_COLLECTION", "qdrant", "collection", "collection", lambda v, k: str(v)),
    ("HTTP_TIMEOUT_SECONDS", "qdrant", "timeout_seconds", "http_timeout_seconds", parse_int),
    ("DATA_DIR", "app", "data_dir", "data_dir", lambda v, k: str(v)),
    ("LOG_DIR", "app", "log_dir", "log_dir", lambda v, k: str(v)),
)


def load_config(path: str | Path) -> dict:
    """Raw YAML dict; a missing file means built-in defaults."""
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top level must be a mapping")
    return data


def _resolve(
    cfg: dict,
    keys: Tuple[Tuple[str, str, str, str, Callable[[Any, str], Any]], ...],
    env: Dict[str, str],
) -> Dict[str, Any]:
    # env > file > model default
    out: Dict[str, Any] = {}
    for env_key, section, yaml_key, field, parse in keys:
        raw = env.get(env_key)
        if raw is None or not str(raw).strip():
            raw = (cfg.get(section) or {}).get(yaml_key)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        out[field] = parse(raw, env_key)
    return out


def build_app_config(cfg: dict, env: Optional[Dict[str, str]] = None) -> AppConfig:
    env = dict(os.environ) if env is None else env
    runtime = RuntimeSettings.build(**_resolve(cfg, _RUNTIME_KEYS, env))
    values = _resolve(cfg, _APP_KEYS, env)
    try:
        return AppConfig(runtime=runtime, **values)
    except ValidationError as e:
        raise ConfigError(_first_error(e)) from e


def load_app_config(path: str | Path = "config.yaml", env: Optional[Dict[str, str]] = None) -> AppConfig:
    return build_app_config(load_config(path), env=env)
