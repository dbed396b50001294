"""Unit test fixtures — deterministic embeddings and in-memory collaborators."""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from collections.abc import Sequence

import numpy as np
import pytest

from memledger.config import RetrievalConfig
from memledger.memory.cleanup import CleanupQueue
from memledger.memory.context import SessionContext
from memledger.memory.pointer import PointerProtocol
from memledger.memory.schemas import ChatMessage
from memledger.memory.session import SessionCache
from memledger.memory.summarization import SummarizationPipeline
from memledger.retrieval.embedding import EmbeddingEngine
from memledger.storage.blobstore import InMemoryBlobStore
from memledger.storage.registry import InMemoryRegistry

_TOKEN = re.compile(r"[a-z0-9]+")


class HashingEncoder:
    """Bag-of-words encoder: each token lands in a SHA-256 chosen bucket."""

    def __init__(self, dimensions: int = 256) -> None:
        self.dimensions = dimensions
        self.calls = 0

    def encode(self, sentences, **kwargs):
        self.calls += 1
        vector = np.zeros(self.dimensions, dtype=np.float32)
        for token in _TOKEN.findall(str(sentences).lower()):
            bucket = int(hashlib.sha256(token.encode("utf-8")).hexdigest(), 16)
            vector[bucket % self.dimensions] += 1.0
        if kwargs.get("normalize_embeddings"):
            norm = np.linalg.norm(vector)
            if norm:
                vector = vector / norm
        return vector


class CountingBlobStore(InMemoryBlobStore):
    """In-memory store that records calls and can fail chosen refs."""

    def __init__(self) -> None:
        super().__init__()
        self.reads: list[str] = []
        self.writes: list[bytes] = []
        self.deletes: list[str] = []
        self.failing_reads: set[str] = set()

    @property
    def calls(self) -> int:
        return len(self.reads) + len(self.writes) + len(self.deletes)

    async def read(self, ref: str) -> bytes:
        self.reads.append(ref)
        if ref in self.failing_reads:
            raise ConnectionError(f"read of {ref} refused")
        return await super().read(ref)

    async def write(self, data: bytes, **kwargs) -> str:
        self.writes.append(bytes(data))
        return await super().write(data, **kwargs)

    async def delete(self, ref: str) -> None:
        self.deletes.append(ref)
        await super().delete(ref)

    def put_json(self, payload: object) -> str:
        """Store *payload* synchronously; returns its ref."""
        data = json.dumps(payload).encode("utf-8")
        ref = hashlib.sha256(data).hexdigest()
        self._blobs[ref] = data
        return ref


class ScriptedLanguageModel:
    """Returns queued replies (or ``default``) and records every call.

    When ``gate`` is set, each call waits on it before answering; when
    ``error`` is set, calls raise it.
    """

    def __init__(self, replies: Sequence[str] = (), default: str = "ok") -> None:
        self.replies = list(replies)
        self.default = default
        self.calls: list[tuple[str, list[ChatMessage], float | None]] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def complete(self, system_prompt, messages, *, temperature=None) -> str:
        self.calls.append((system_prompt, list(messages), temperature))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return self.default


@pytest.fixture()
def encoder() -> HashingEncoder:
    return HashingEncoder()


@pytest.fixture()
def embedding(encoder) -> EmbeddingEngine:
    return EmbeddingEngine(model_loader=lambda name: encoder)


@pytest.fixture()
def blob_store() -> CountingBlobStore:
    return CountingBlobStore()


@pytest.fixture()
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture()
def llm() -> ScriptedLanguageModel:
    return ScriptedLanguageModel()


@pytest.fixture()
def retrieval_config(tmp_path) -> RetrievalConfig:
    return RetrievalConfig(cache_root=str(tmp_path / "cache"))


@pytest.fixture()
async def context():
    ctx = SessionContext()
    yield ctx
    await ctx.close()


@pytest.fixture()
def cleanup(blob_store) -> CleanupQueue:
    return CleanupQueue(blob_store)


@pytest.fixture()
def pointer(context, blob_store, registry, cleanup) -> PointerProtocol:
    return PointerProtocol(context, blob_store, registry, cleanup=cleanup)


@pytest.fixture()
def sessions(context, blob_store, pointer, embedding, retrieval_config) -> SessionCache:
    return SessionCache(context, blob_store, pointer, embedding, retrieval_config)


@pytest.fixture()
def summarizer(context, pointer, llm) -> SummarizationPipeline:
    return SummarizationPipeline(context, pointer, llm)


@pytest.fixture()
def identity_ref(blob_store) -> str:
    return blob_store.put_json(
        {
            "name": "Ada",
            "archetype": "cartographer",
            "persona": {"traits": ["curious"], "goals": ["map the caverns"]},
            "chat": {"systemPrompt": "Stay in character."},
        }
    )
