"""Configuration loading from environment variables and memoria.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from memoria.memory.importance import ImportanceWeights

if TYPE_CHECKING:
    from memoria.retrieval.context import ConversationContext
    from memoria.retrieval.pipeline import EnhancedSearchOptions

_DEFAULT_WORKSPACE = Path.home() / ".memoria" / "workspace"
_CONFIG_FILENAME = "memoria.toml"


@dataclass
class CaptureConfig:
    """End-of-run fact capture."""

    enabled: bool = True
    default_entity: str = "user"
    max_facts_per_run: int = 5
    opinion_confidence: float = 0.7


@dataclass
class ImportanceConfig:
    """Importance score weights."""

    retrieval: float = 0.3
    citation: float = 0.5
    user_correction: float = -0.8
    recency_decay_per_day: float = 0.02

    def weights(self) -> ImportanceWeights:
        return ImportanceWeights(
            retrieval=self.retrieval,
            citation=self.citation,
            user_correction=self.user_correction,
            recency_decay_per_day=self.recency_decay_per_day,
        )


@dataclass
class RetrievalConfig:
    """Default switches for the enhanced search pipeline."""

    limit: int = 10
    expansion: bool = False
    expansion_max_terms: int = 3
    rerank: bool = True
    rerank_top_k: int = 20
    rerank_min_score: float = 0.0
    multi_hop: bool = False
    max_hops: int = 2
    min_improvement: float = 0.05
    results_per_hop: int = 10
    context_aware: bool = True

    def search_options(self, context: ConversationContext | None = None) -> EnhancedSearchOptions:
        from memoria.retrieval.pipeline import (
            ContextStage,
            EnhancedSearchOptions,
            ExpansionStage,
            MultiHopStage,
            RerankStage,
        )

        return EnhancedSearchOptions(
            context=ContextStage(enabled=self.context_aware and context is not None, context=context),
            expansion=ExpansionStage(enabled=self.expansion, max_terms=self.expansion_max_terms),
            multi_hop=MultiHopStage(
                enabled=self.multi_hop,
                max_hops=self.max_hops,
                min_improvement=self.min_improvement,
                results_per_hop=self.results_per_hop,
            ),
            rerank=RerankStage(
                enabled=self.rerank, top_k=self.rerank_top_k, min_score=self.rerank_min_score
            ),
            limit=self.limit,
        )


@dataclass
class MemoriaConfig:
    """Top-level memoria configuration."""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    importance: ImportanceConfig = field(default_factory=ImportanceConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    workspace_dir: Path = _DEFAULT_WORKSPACE
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MemoriaConfig:
    """Load configuration from environment variables and optional memoria.toml.

    Priority: environment variables > memoria.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.memoria/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".memoria" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    capture_data = file_data.get("capture", {})
    importance_data = file_data.get("importance", {})
    retrieval_data = file_data.get("retrieval", {})
    defaults = RetrievalConfig()

    config = MemoriaConfig(
        capture=CaptureConfig(
            enabled=bool(capture_data.get("enabled", True)),
            default_entity=os.getenv(
                "MEMORIA_DEFAULT_ENTITY", capture_data.get("default_entity", "user")
            ),
            max_facts_per_run=int(
                os.getenv("MEMORIA_MAX_FACTS", capture_data.get("max_facts_per_run", 5))
            ),
            opinion_confidence=float(capture_data.get("opinion_confidence", 0.7)),
        ),
        importance=ImportanceConfig(
            retrieval=float(importance_data.get("retrieval", 0.3)),
            citation=float(importance_data.get("citation", 0.5)),
            user_correction=float(importance_data.get("user_correction", -0.8)),
            recency_decay_per_day=float(importance_data.get("recency_decay_per_day", 0.02)),
        ),
        retrieval=RetrievalConfig(
            **{
                name: type(getattr(defaults, name))(retrieval_data[name])
                for name in defaults.__dataclass_fields__
                if name in retrieval_data
            }
        ),
        workspace_dir=Path(
            os.getenv("MEMORIA_WORKSPACE", file_data.get("workspace_dir", str(_DEFAULT_WORKSPACE)))
        ).expanduser(),
        log_level=os.getenv("MEMORIA_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
