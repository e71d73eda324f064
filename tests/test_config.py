"""Tests for configuration loading."""

import pytest
from pathlib import Path

from memoria.config import RetrievalConfig, load_config
from memoria.retrieval.context import ConversationContext

_ENV_KEYS = ["MEMORIA_DEFAULT_ENTITY", "MEMORIA_MAX_FACTS", "MEMORIA_WORKSPACE", "MEMORIA_LOG_LEVEL"]


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self):
        config = load_config()
        assert config.capture.enabled is True
        assert config.capture.default_entity == "user"
        assert config.capture.max_facts_per_run == 5
        assert config.capture.opinion_confidence == 0.7
        assert config.importance.citation == 0.5
        assert config.retrieval.rerank is True
        assert config.log_level == "INFO"

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MEMORIA_DEFAULT_ENTITY", "jack")
        monkeypatch.setenv("MEMORIA_MAX_FACTS", "2")
        monkeypatch.setenv("MEMORIA_WORKSPACE", str(tmp_path / "ws"))

        config = load_config()
        assert config.capture.default_entity == "jack"
        assert config.capture.max_facts_per_run == 2
        assert config.workspace_dir == tmp_path / "ws"

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "memoria.toml"
        toml_path.write_text("""
[capture]
enabled = false
opinion_confidence = 0.6

[importance]
recency_decay_per_day = 0.05

[retrieval]
expansion = true
rerank_top_k = 5
min_improvement = 0
""")
        config = load_config(toml_path)
        assert config.capture.enabled is False
        assert config.capture.opinion_confidence == 0.6
        assert config.importance.weights().recency_decay_per_day == 0.05
        assert config.retrieval.expansion is True
        assert config.retrieval.rerank_top_k == 5
        assert isinstance(config.retrieval.min_improvement, float)

    def test_toml_found_in_cwd(self, tmp_path: Path):
        (tmp_path / "memoria.toml").write_text('log_level = "DEBUG"\n')
        assert load_config().log_level == "DEBUG"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MEMORIA_DEFAULT_ENTITY", "jack")

        toml_path = tmp_path / "memoria.toml"
        toml_path.write_text("""
[capture]
default_entity = "jill"
""")
        config = load_config(toml_path)
        assert config.capture.default_entity == "jack"  # env wins


class TestSearchOptions:
    def test_stages_follow_config(self):
        options = RetrievalConfig(expansion=True, rerank_top_k=7, limit=4).search_options()
        assert options.expansion.enabled is True
        assert options.rerank.enabled is True
        assert options.rerank.top_k == 7
        assert options.multi_hop.enabled is False
        assert options.limit == 4

    def test_context_needs_a_context(self):
        assert RetrievalConfig().search_options().context.enabled is False
        context = ConversationContext(intent="debugging")
        options = RetrievalConfig().search_options(context)
        assert options.context.enabled is True
        assert options.context.context is context
