"""Composition root wiring the memory services together.

``build_runtime(settings)`` constructs every collaborator from
configuration; tests and embedders may pass their own blob store,
registry, language model or embedding engine instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from memledger.config import Settings
from memledger.llm.adapters import build_language_model
from memledger.llm.adapters import LanguageModel
from memledger.memory.chat import ChatService
from memledger.memory.cleanup import CleanupQueue
from memledger.memory.context import SessionContext
from memledger.memory.pointer import PointerProtocol
from memledger.memory.session import SessionCache
from memledger.memory.summarization import SummarizationPipeline
from memledger.retrieval.embedding import EmbeddingEngine
from memledger.storage.blobstore import BlobStore
from memledger.storage.blobstore import build_blob_store
from memledger.storage.registry import build_registry
from memledger.storage.registry import Registry

logger = logging.getLogger(__name__)


@dataclass
class MemoryRuntime:
    settings: Settings
    context: SessionContext
    blob_store: BlobStore
    registry: Registry
    llm: LanguageModel
    embedding: EmbeddingEngine
    cleanup: CleanupQueue
    pointer: PointerProtocol
    sessions: SessionCache
    summarizer: SummarizationPipeline
    chat: ChatService

    async def close(self) -> None:
        """Finish background jobs and release the registry connection."""
        await self.context.close()
        close = getattr(self.registry, "close", None)
        if close is not None:
            await close()
        logger.info("Memory runtime closed")


def build_runtime(
    settings: Settings | None = None,
    *,
    blob_store: BlobStore | None = None,
    registry: Registry | None = None,
    llm: LanguageModel | None = None,
    embedding: EmbeddingEngine | None = None,
) -> MemoryRuntime:
    """Wire a ``MemoryRuntime``; missing collaborator config raises
    ``NotConfiguredError``."""
    settings = settings or Settings()
    context = SessionContext()
    blob_store = blob_store or build_blob_store(settings.blob_store)
    registry = registry or build_registry(settings.registry)
    llm = llm or build_language_model(settings.llm)
    embedding = embedding or EmbeddingEngine(settings.embedding)

    cleanup = CleanupQueue(blob_store, settings.cleanup)
    pointer = PointerProtocol(
        context,
        blob_store,
        registry,
        blob_config=settings.blob_store,
        cleanup=cleanup,
        cleanup_config=settings.cleanup,
    )
    sessions = SessionCache(context, blob_store, pointer, embedding, settings.retrieval)
    summarizer = SummarizationPipeline(
        context, pointer, llm, settings.summarization, settings.llm
    )
    chat = ChatService(
        sessions,
        summarizer,
        llm,
        retrieval_config=settings.retrieval,
        llm_config=settings.llm,
    )
    return MemoryRuntime(
        settings=settings,
        context=context,
        blob_store=blob_store,
        registry=registry,
        llm=llm,
        embedding=embedding,
        cleanup=cleanup,
        pointer=pointer,
        sessions=sessions,
        summarizer=summarizer,
        chat=chat,
    )
