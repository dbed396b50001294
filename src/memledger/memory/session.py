"""Lazily-built, process-wide session cache keyed by agent id."""

from __future__ import annotations

import logging

from memledger.config import RetrievalConfig
from memledger.errors import RetrievalFailure
from memledger.memory.context import SessionContext
from memledger.memory.decoding import decode_object
from memledger.memory.decoding import parse_identity
from memledger.memory.decoding import SINGLE_FIRST
from memledger.memory.pointer import PointerProtocol
from memledger.memory.schemas import AgentIdentity
from memledger.memory.schemas import MemorySource
from memledger.memory.state import SessionState
from memledger.observability import track_latency
from memledger.retrieval.blob_ingest import BlobIngestAdapter
from memledger.retrieval.embedding import EmbeddingEngine
from memledger.retrieval.schemas import AddDocumentOptions
from memledger.retrieval.schemas import IngestOptions
from memledger.retrieval.store import RetrievalStore
from memledger.storage.blobstore import BlobStore

logger = logging.getLogger(__name__)

IDENTITY_SUMMARY_SOURCE = "identity-summary"


class SessionCache:
    """Builds and caches one ``SessionState`` per agent."""

    def __init__(
        self,
        context: SessionContext,
        blob_store: BlobStore,
        pointer: PointerProtocol,
        embedding: EmbeddingEngine,
        config: RetrievalConfig | None = None,
    ) -> None:
        self._context = context
        self._blob_store = blob_store
        self._pointer = pointer
        self._embedding = embedding
        self._config = config or RetrievalConfig()

    def get(self, agent_id: str) -> SessionState | None:
        return self._context.sessions.get(agent_id)

    async def load_session(
        self,
        agent_id: str,
        identity_ref: str,
        skip_sync: bool = False,
        known_latest_summary_ref: str | None = None,
    ) -> SessionState:
        """Return the agent's session, building it on first access.

        A cached session is reused when its identity ref matches; unless
        *skip_sync* is set the pointer is re-synced first so that writes
        made elsewhere become visible.
        """
        cached = self._context.sessions.get(agent_id)
        if cached is not None and cached.identity_ref == identity_ref:
            if not skip_sync:
                await self._pointer.sync(cached, known_latest_summary_ref)
            return cached

        with track_latency("session.create"):
            state = await self._create_session(
                agent_id, identity_ref, known_latest_summary_ref
            )
        self._context.sessions[agent_id] = state
        return state

    async def _create_session(
        self,
        agent_id: str,
        identity_ref: str,
        known_latest_summary_ref: str | None,
    ) -> SessionState:
        identity = await self.fetch_identity(identity_ref)
        store = RetrievalStore(
            self._config.store_path(agent_id),
            self._embedding,
            default_options=AddDocumentOptions(
                prevent_duplicates=self._config.prevent_duplicates,
                duplicate_threshold=self._config.duplicate_threshold,
            ),
        )
        state = SessionState(
            agent_id=agent_id,
            identity_ref=identity_ref,
            identity=identity,
            store=store,
            ingest=BlobIngestAdapter(store),
        )

        await self._ingest_identity_summaries(state)
        await self._ingest_sources(state, identity.memory_sources)
        await self._pointer.sync(state, known_latest_summary_ref)
        logger.info(
            "Session ready for agent %s (%d documents, %d history messages)",
            agent_id,
            store.count,
            len(state.recent_history),
        )
        return state

    async def fetch_identity(self, identity_ref: str) -> AgentIdentity:
        """Decode an identity stored as a single object or a container.

        Raises ``RetrievalFailure`` when neither layout decodes.
        """
        try:
            decoded = await decode_object(
                self._blob_store, identity_ref, SINGLE_FIRST, parse_identity
            )
        except RetrievalFailure:
            logger.error("Identity retrieval failed for %s", identity_ref)
            raise
        logger.debug(
            "Identity %s decoded as %s", identity_ref, decoded.representation.value
        )
        return decoded.value

    async def _ingest_identity_summaries(self, state: SessionState) -> None:
        for summary in state.identity.curated_summaries:
            metadata = {
                "source": IDENTITY_SUMMARY_SOURCE,
                "agent_id": state.agent_id,
                "label": summary.label,
            }
            if summary.timestamp:
                metadata["timestamp"] = summary.timestamp
            await state.store.add_document(summary.content, metadata)

    async def _ingest_sources(
        self, state: SessionState, sources: list[MemorySource]
    ) -> None:
        for source in sources:
            key = source.key()
            if key in state.loaded_refs:
                continue
            if not source.ref:
                raise ValueError(f"memory source {key} has no ref")

            options = IngestOptions(
                metadata={"agent_id": state.agent_id, "label": source.description}
            )
            if source.kind == "blob":
                await state.ingest.ingest_blob_by_id(self._blob_store, source.ref, options)
            else:
                await state.ingest.ingest_container_part(
                    self._blob_store, state.identity_ref, source.ref, options
                )
            state.loaded_refs.add(key)
