"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
``load_settings()`` builds a ``Settings`` bundle from environment
variables; everything else can be overridden at construction time.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class EmbeddingConfig:
    """Sentence embedding model settings."""

    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    max_content_chars: int = 4000


@dataclass(frozen=True)
class RetrievalConfig:
    """Local retrieval store defaults."""

    cache_root: str = ".cache"
    prevent_duplicates: bool = True
    duplicate_threshold: float = 0.8
    search_limit: int = 10
    search_threshold: float = 0.7
    chat_context_limit: int = 5
    chat_context_threshold: float = 0.55

    def store_path(self, agent_id: str) -> Path:
        """Return the on-disk path of *agent_id*'s retrieval store."""
        return Path(self.cache_root) / "agents" / "rag" / f"{agent_id}.json"


@dataclass(frozen=True)
class BlobStoreConfig:
    """HTTP blob store endpoints and write policy."""

    aggregator_url: str | None = None
    publisher_url: str | None = None
    fast_read_timeout_seconds: float = 5.0
    retention_epochs: int = 3


@dataclass(frozen=True)
class RegistryConfig:
    """Pointer registry backend settings."""

    redis_url: str | None = None
    key_prefix: str = "memledger"


@dataclass(frozen=True)
class LLMConfig:
    """Language-generation provider settings."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    chat_temperature: float = 0.4
    summary_temperature: float = 0.3


@dataclass(frozen=True)
class SummarizationConfig:
    """Buffering and trigger parameters for chat summarization."""

    exchange_threshold: int = 10
    persisted_history: int = 10
    retained_after_trim: int = 2

    @property
    def trigger_length(self) -> int:
        """Buffered message count that triggers automatic summarization."""
        return self.exchange_threshold * 2


@dataclass(frozen=True)
class CleanupConfig:
    """Superseded-blob reconciliation settings."""

    enabled: bool = True
    max_attempts: int = 3


@dataclass(frozen=True)
class Settings:
    """All subsystem settings bundled together."""

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    blob_store: BlobStoreConfig = field(default_factory=BlobStoreConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    summarization: SummarizationConfig = field(default_factory=SummarizationConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    dotenv_path: str | Path | None = None,
) -> Settings:
    """Build ``Settings`` from environment variables.

    When *env* is omitted, a ``.env`` file is loaded first (existing
    environment variables stay authoritative) and ``os.environ`` is read.
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        env = os.environ

    defaults = Settings()
    return Settings(
        embedding=EmbeddingConfig(
            model_name=env.get("MEMLEDGER_EMBEDDING_MODEL", defaults.embedding.model_name),
        ),
        retrieval=RetrievalConfig(
            cache_root=env.get("MEMLEDGER_CACHE_ROOT", defaults.retrieval.cache_root),
        ),
        blob_store=BlobStoreConfig(
            aggregator_url=env.get("MEMLEDGER_AGGREGATOR_URL") or None,
            publisher_url=env.get("MEMLEDGER_PUBLISHER_URL") or None,
            fast_read_timeout_seconds=float(
                env.get(
                    "MEMLEDGER_FAST_READ_TIMEOUT",
                    defaults.blob_store.fast_read_timeout_seconds,
                )
            ),
            retention_epochs=int(
                env.get("MEMLEDGER_RETENTION_EPOCHS", defaults.blob_store.retention_epochs)
            ),
        ),
        registry=RegistryConfig(
            redis_url=env.get("MEMLEDGER_REDIS_URL") or None,
        ),
        llm=LLMConfig(
            provider=env.get("MEMLEDGER_LLM_PROVIDER", defaults.llm.provider),
            model=env.get("OPENAI_MODEL", defaults.llm.model),
            api_key=env.get("OPENAI_API_KEY") or None,
            base_url=env.get("OPENAI_BASE_URL", defaults.llm.base_url),
        ),
    )
