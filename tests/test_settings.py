import pytest

from grounded_rag.errors import ConfigError
from grounded_rag.index.schema import ChunkStrategy
from grounded_rag.settings import (
    RuntimeSettings,
    build_app_config,
    load_app_config,
    load_config,
    parse_float,
    parse_strategy,
)


def test_defaults():
    cfg = build_app_config({}, env={})
    assert cfg.embed_model == "bge-m3"
    assert cfg.chat_model == "llama3.1:8b"
    assert cfg.store == "qdrant"
    assert cfg.runtime.top_k == 8
    assert cfg.runtime.min_score == 0.60
    assert cfg.runtime.min_gap == 0.02
    assert cfg.runtime.max_context_chars_budget == 12_000
    assert cfg.runtime.chunk_strategy == ChunkStrategy.MARKDOWN_AWARE


def test_env_overrides_file():
    file_cfg = {"retrieval": {"top_k": 4, "min_score": 0.5}, "qdrant": {"collection": "from_file"}}
    env = {"TOP_K": "12", "QDRANT_COLLECTION": "from_env", "MIN_RETRIEVAL_GAP": ""}
    cfg = build_app_config(file_cfg, env=env)

    assert cfg.runtime.top_k == 12
    assert cfg.runtime.min_score == 0.5
    assert cfg.runtime.min_gap == 0.02
    assert cfg.collection == "from_env"


def test_comma_decimal_separator():
    assert parse_float("0,65", "MIN_RETRIEVAL_SCORE") == pytest.approx(0.65)
    cfg = build_app_config({}, env={"MIN_RETRIEVAL_SCORE": "0,7", "CHAT_TEMPERATURE": "0.1"})
    assert cfg.runtime.min_score == pytest.approx(0.7)
    assert cfg.runtime.chat_temperature == pytest.approx(0.1)


def test_strategy_aliases():
    assert parse_strategy("MarkdownAware") == ChunkStrategy.MARKDOWN_AWARE
    assert parse_strategy("FixedSizeWithOverlap") == ChunkStrategy.FIXED_OVERLAP
    assert parse_strategy("fixed-overlap") == ChunkStrategy.FIXED_OVERLAP
    with pytest.raises(ConfigError):
        parse_strategy("semantic")


def test_invalid_values_raise_config_error():
    with pytest.raises(ConfigError):
        build_app_config({}, env={"TOP_K": "many"})
    with pytest.raises(ConfigError):
        build_app_config({}, env={"TOP_K": "0"})
    with pytest.raises(ConfigError):
        build_app_config({"chunking": {"chunk_size_chars": 100, "chunk_overlap_chars": 100}}, env={})
    with pytest.raises(ConfigError):
        build_app_config({}, env={"MIN_CHUNK_CHARS": "500", "MAX_CHUNK_CHARS": "400"})


def test_updated_returns_new_validated_snapshot():
    base = RuntimeSettings()
    changed = base.updated(top_k=3)
    assert changed.top_k == 3
    assert base.top_k == 8
    with pytest.raises(ConfigError):
        base.updated(chunk_overlap_chars=5000)


def test_settings_are_frozen():
    s = RuntimeSettings()
    with pytest.raises(Exception):
        s.top_k = 2


def test_load_config_file(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == {}
    p = tmp_path / "config.yaml"
    p.write_text("app:\n  store: memory\nchunking:\n  strategy: fixed_overlap\n", encoding="utf-8")
    cfg = load_app_config(p, env={})
    assert cfg.store == "memory"
    assert cfg.runtime.chunk_strategy == ChunkStrategy.FIXED_OVERLAP


def test_load_config_rejects_non_mapping(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)
