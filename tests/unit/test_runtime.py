"""Unit tests for the composition root."""

from __future__ import annotations

import pytest

from memledger.config import LLMConfig
from memledger.config import RetrievalConfig
from memledger.config import Settings
from memledger.errors import NotConfiguredError
from memledger.memory.chat import ChatRequest
from memledger.memory.enrichment import load_run_stats
from memledger.runtime import build_runtime


class TestBuildRuntime:
    def test_unconfigured_blob_store_raises(self, registry, llm, embedding) -> None:
        with pytest.raises(NotConfiguredError, match="blob_store"):
            build_runtime(Settings(), registry=registry, llm=llm, embedding=embedding)

    def test_unconfigured_registry_raises(self, blob_store, llm, embedding) -> None:
        with pytest.raises(NotConfiguredError, match="redis_url"):
            build_runtime(Settings(), blob_store=blob_store, llm=llm, embedding=embedding)

    def test_noop_provider_needs_no_key(self, blob_store, registry, embedding) -> None:
        runtime = build_runtime(
            Settings(llm=LLMConfig(provider="noop")),
            blob_store=blob_store,
            registry=registry,
            embedding=embedding,
        )
        assert runtime.pointer is not None

    async def test_chat_then_flush_end_to_end(
        self, blob_store, registry, llm, embedding, identity_ref, tmp_path
    ) -> None:
        settings = Settings(retrieval=RetrievalConfig(cache_root=str(tmp_path)))
        runtime = build_runtime(
            settings, blob_store=blob_store, registry=registry, llm=llm, embedding=embedding
        )
        llm.replies = ["Hello, wanderer.", "They greeted each other."]

        response = await runtime.chat.respond(
            ChatRequest(agent_id="a", identity_ref=identity_ref, message="Hello")
        )
        pointer_ref = await runtime.summarizer.flush("a")

        assert response.answer == "Hello, wanderer."
        assert pointer_ref == await registry.get_pointer("a")
        assert (tmp_path / "agents" / "rag" / "a.json").exists()
        assert await load_run_stats(runtime.pointer, "a") is not None
        await runtime.close()
        assert runtime.context.sessions == {}
