"""Versioned pointer protocol over an agent's registry entry.

Pointer states::

    NoPointer ──▶ LegacyDirectSummary   (pointer → flat chat summary)
        │
        └──────▶ IndexedV1+             (pointer → PointerIndex → summary / runs)

Every write is copy-on-write: new content blob, new index blob, then a
registry repoint. The repoint is the commit point; a failure there raises
``RegistryWriteFailure`` and leaves the just-written blobs orphaned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from memledger.config import BlobStoreConfig
from memledger.config import CleanupConfig
from memledger.errors import RegistryWriteFailure
from memledger.errors import RetrievalFailure
from memledger.memory.cleanup import CleanupQueue
from memledger.memory.context import SessionContext
from memledger.memory.decoding import CONTAINER_FIRST
from memledger.memory.decoding import classify_pointer_payload
from memledger.memory.decoding import decode_object
from memledger.memory.decoding import IndexedPointer
from memledger.memory.decoding import parse_chat_summary
from memledger.memory.schemas import ActiveRun
from memledger.memory.schemas import ChatSection
from memledger.memory.schemas import ChatSummaryDocument
from memledger.memory.schemas import PastRun
from memledger.memory.schemas import PointerIndex
from memledger.memory.schemas import RunOutcome
from memledger.memory.schemas import RunSnapshot
from memledger.memory.schemas import SummaryInput
from memledger.memory.state import SessionState
from memledger.observability import track_latency
from memledger.retrieval.blob_ingest import KIND_BLOB
from memledger.storage.blobstore import BlobStore
from memledger.storage.registry import Registry
from memledger.storage.registry import TxResult

logger = logging.getLogger(__name__)

CURATED_SUMMARY_SOURCE = "curated-summary"


class IndexCommit(BaseModel):
    """A committed index write."""

    ref: str
    tx: TxResult


class PersistResult(BaseModel):
    """Outcome of a content write plus index repoint.

    ``pointer_ref`` is the externally visible "latest" handle (the index);
    ``content_ref`` is the blob holding the new content.
    """

    pointer_ref: str
    content_ref: str
    tx: TxResult


class PointerProtocol:
    """Reads and writes the document behind each agent's pointer."""

    def __init__(
        self,
        context: SessionContext,
        blob_store: BlobStore,
        registry: Registry,
        *,
        blob_config: BlobStoreConfig | None = None,
        cleanup: CleanupQueue | None = None,
        cleanup_config: CleanupConfig | None = None,
    ) -> None:
        self._context = context
        self._blob_store = blob_store
        self._registry = registry
        self._blob_config = blob_config or BlobStoreConfig()
        self._cleanup = cleanup
        self._cleanup_config = cleanup_config or CleanupConfig()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def sync(self, session: SessionState, known_ref: str | None = None) -> None:
        """Bring *session* up to date with the agent's pointer.

        Unreadable or unrecognized payloads are logged and leave the
        session's content as it was, flagged ``pointer_unresolved``.
        """
        ref = known_ref
        if not ref:
            try:
                ref = await self._registry.get_pointer(session.agent_id)
            except Exception as exc:
                logger.warning(
                    "Registry read failed for agent %s: %s", session.agent_id, exc
                )
                session.pointer_unresolved = True
                return
        if not ref:
            logger.info("No pointer found for agent %s", session.agent_id)
            session.pointer_unresolved = False
            return

        if ref in session.loaded_refs:
            session.pointer_ref = ref
            session.pointer_unresolved = False
            return

        try:
            with track_latency("pointer.sync.fetch"):
                decoded = await decode_object(
                    self._blob_store, ref, CONTAINER_FIRST, classify_pointer_payload
                )
        except RetrievalFailure as exc:
            logger.warning("Could not resolve pointer for agent %s: %s", session.agent_id, exc)
            session.pointer_unresolved = True
            return

        payload = decoded.value
        if isinstance(payload, IndexedPointer):
            if not await self._apply_index(session, ref, payload.index):
                session.pointer_unresolved = True
                return
        else:
            logger.info(
                "Agent %s points at a legacy summary %s; loading it directly",
                session.agent_id,
                ref,
            )
            await self._apply_summary(session, ref, payload.summary)
        session.pointer_ref = ref
        session.pointer_unresolved = False

    async def process_chat_summary_payload(
        self, session: SessionState, text: str, ref: str
    ) -> None:
        """Ingest a chat-summary document and adopt its history."""
        await self._apply_summary(session, ref, parse_chat_summary(text))

    def get_or_create_index(self, session: SessionState) -> PointerIndex:
        """The cached index, or a fresh v1 seeded from the known summary."""
        if session.index is not None:
            return session.index
        return PointerIndex(
            version=1,
            chat=ChatSection(latest_summary_ref=session.latest_summary_ref),
        )

    async def read_index(self, agent_id: str) -> PointerIndex | None:
        """Resolve *agent_id*'s index straight from the registry.

        Legacy pointers yield a fresh index seeded with the legacy ref.
        Raises ``RetrievalFailure`` when the pointer cannot be decoded.
        """
        index, _ = await self._read_remote_index(agent_id)
        return index

    async def _apply_index(
        self, session: SessionState, ref: str, index: PointerIndex
    ) -> bool:
        summary_ref = index.chat.latest_summary_ref
        if summary_ref and summary_ref not in session.loaded_refs:
            try:
                decoded = await decode_object(
                    self._blob_store, summary_ref, CONTAINER_FIRST, parse_chat_summary
                )
            except RetrievalFailure as exc:
                logger.warning(
                    "Index %s names unreadable summary %s: %s", ref, summary_ref, exc
                )
                return False
            await self._apply_summary(session, summary_ref, decoded.value)
        if summary_ref:
            session.latest_summary_ref = summary_ref
        session.index = index
        session.loaded_refs.add(ref)
        return True

    async def _apply_summary(
        self, session: SessionState, ref: str, summary: ChatSummaryDocument
    ) -> None:
        if summary.content:
            await session.store.add_document(
                summary.content,
                self._summary_metadata(session.agent_id, ref, summary.label),
            )
        if summary.history is not None:
            session.recent_history = list(summary.history)
            logger.info(
                "Loaded %d recent messages for agent %s from %s",
                len(summary.history),
                session.agent_id,
                ref,
            )
        session.loaded_refs.add(ref)
        session.latest_summary_ref = ref

    async def _read_remote_index(
        self, agent_id: str
    ) -> tuple[PointerIndex | None, str | None]:
        ref = await self._registry.get_pointer(agent_id)
        if not ref:
            return None, None
        decoded = await decode_object(
            self._blob_store, ref, CONTAINER_FIRST, classify_pointer_payload
        )
        payload = decoded.value
        if isinstance(payload, IndexedPointer):
            return payload.index, ref
        return PointerIndex(version=1, chat=ChatSection(latest_summary_ref=ref)), ref

    async def _resolve_index(
        self, agent_id: str
    ) -> tuple[PointerIndex, str | None]:
        session = self._context.sessions.get(agent_id)
        if session is not None and not session.pointer_unresolved:
            index = self.get_or_create_index(session).model_copy(deep=True)
            return index, session.pointer_ref
        index, ref = await self._read_remote_index(agent_id)
        return (index or PointerIndex(version=1)), ref

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    async def save_index(self, agent_id: str, index: PointerIndex) -> IndexCommit:
        """Write *index* as a new blob and repoint the registry to it."""
        async with self._context.write_lock(agent_id):
            return await self._commit_index(agent_id, index)

    async def persist_summary(self, agent_id: str, summary: SummaryInput) -> PersistResult:
        """Store a chat summary and make it the agent's latest state."""
        if not summary.content or not summary.content.strip():
            raise ValueError("summary content is required")

        async with self._context.write_lock(agent_id):
            index, prior_pointer = await self._resolve_index(agent_id)
            document = ChatSummaryDocument(
                agent_id=agent_id,
                label=summary.label,
                content=summary.content,
                history=list(summary.history or []),
            )
            summary_ref = await self._write_blob(
                document.to_wire(), identifier=summary.label, agent_id=agent_id
            )
            prior_summary = index.chat.latest_summary_ref
            index.chat = ChatSection(latest_summary_ref=summary_ref)
            commit = await self._commit_index(agent_id, index)

            session = self._context.sessions.get(agent_id)
            if session is not None:
                await self._ingest_committed_summary(session, summary_ref, summary)

            self._schedule_cleanup(
                agent_id,
                index,
                commit.ref,
                stale=[prior_summary, prior_pointer],
            )

        return PersistResult(pointer_ref=commit.ref, content_ref=summary_ref, tx=commit.tx)

    async def persist_active_run(
        self, agent_id: str, state: dict[str, Any]
    ) -> PersistResult:
        """Snapshot an in-progress run and record it as ``activeRun``."""
        async with self._context.write_lock(agent_id):
            index, prior_pointer = await self._resolve_index(agent_id)
            run_ref = await self._write_blob(
                RunSnapshot(agent_id=agent_id, state=state).to_wire(),
                identifier=f"active-run-{agent_id}",
                agent_id=agent_id,
            )
            prior_active = index.rpg.active_run.ref if index.rpg.active_run else None
            index.rpg.active_run = ActiveRun(ref=run_ref)
            commit = await self._commit_index(agent_id, index)
            self._schedule_cleanup(
                agent_id,
                index,
                commit.ref,
                stale=[prior_active, prior_pointer],
            )
        return PersistResult(pointer_ref=commit.ref, content_ref=run_ref, tx=commit.tx)

    async def persist_run(self, agent_id: str, outcome: RunOutcome) -> PersistResult:
        """Append a finished run to ``pastRuns`` and clear ``activeRun``."""
        async with self._context.write_lock(agent_id):
            index, prior_pointer = await self._resolve_index(agent_id)
            run_ref = await self._write_blob(
                RunSnapshot(agent_id=agent_id, state=outcome.state).to_wire(),
                identifier=f"run-{agent_id}",
                agent_id=agent_id,
            )
            prior_active = index.rpg.active_run.ref if index.rpg.active_run else None
            index.rpg.past_runs.append(
                PastRun(
                    ref=run_ref,
                    outcome_floor=outcome.outcome_floor,
                    victory=outcome.victory,
                )
            )
            index.rpg.active_run = None
            commit = await self._commit_index(agent_id, index)
            self._schedule_cleanup(
                agent_id,
                index,
                commit.ref,
                stale=[prior_active, prior_pointer],
            )
        return PersistResult(pointer_ref=commit.ref, content_ref=run_ref, tx=commit.tx)

    async def _commit_index(self, agent_id: str, index: PointerIndex) -> IndexCommit:
        ref = await self._write_blob(
            index.to_wire(), identifier=f"index-{agent_id}", agent_id=agent_id
        )
        try:
            with track_latency("pointer.repoint"):
                tx = await self._registry.set_pointer(agent_id, ref)
        except Exception as exc:
            logger.error(
                "Repoint failed for agent %s; index blob %s is orphaned", agent_id, ref
            )
            raise RegistryWriteFailure(agent_id, ref, str(exc)) from exc

        session = self._context.sessions.get(agent_id)
        if session is not None:
            session.index = index
            session.pointer_ref = ref
            session.loaded_refs.add(ref)
            session.pointer_unresolved = False
        logger.info("Committed index %s for agent %s (%s)", ref, agent_id, tx.digest)
        return IndexCommit(ref=ref, tx=tx)

    async def _write_blob(self, data: bytes, *, identifier: str, agent_id: str) -> str:
        with track_latency("pointer.write_blob"):
            return await self._blob_store.write(
                data,
                retention=self._blob_config.retention_epochs,
                deletable=True,
                identifier=identifier,
                tags={"content-type": "application/json", "agent-id": agent_id},
            )

    async def _ingest_committed_summary(
        self, session: SessionState, summary_ref: str, summary: SummaryInput
    ) -> None:
        try:
            await session.store.add_document(
                summary.content,
                self._summary_metadata(session.agent_id, summary_ref, summary.label),
            )
        except Exception:
            logger.exception(
                "Summary %s committed but local ingest failed for agent %s",
                summary_ref,
                session.agent_id,
            )
        session.loaded_refs.add(summary_ref)
        if summary.history is not None:
            session.recent_history = list(summary.history)
        session.latest_summary_ref = summary_ref

    def _schedule_cleanup(
        self,
        agent_id: str,
        index: PointerIndex,
        index_ref: str,
        *,
        stale: Iterable[str | None],
    ) -> None:
        if self._cleanup is None or not self._cleanup_config.enabled:
            return
        # Anything the committed index still names stays, legacy refs included.
        live = referenced_refs(index) | {index_ref}
        self._cleanup.protect(live)
        doomed = [ref for ref in stale if ref and ref not in live]
        if not doomed:
            return
        self._cleanup.schedule(agent_id, doomed)
        self._context.spawn(self._cleanup.run_once(), name=f"cleanup:{agent_id}")

    @staticmethod
    def _summary_metadata(agent_id: str, ref: str, label: str | None) -> dict[str, Any]:
        return {
            "source": CURATED_SUMMARY_SOURCE,
            "agent_id": agent_id,
            "label": label or "Latest Summary",
            "provenance": {"ref": ref, "kind": KIND_BLOB},
        }


def referenced_refs(index: PointerIndex) -> set[str]:
    """Every blob ref *index* points at."""
    refs = {run.ref for run in index.rpg.past_runs}
    if index.chat.latest_summary_ref:
        refs.add(index.chat.latest_summary_ref)
    if index.rpg.active_run is not None:
        refs.add(index.rpg.active_run.ref)
    return refs
