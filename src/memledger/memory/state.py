"""Per-agent session state."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field

from memledger.memory.schemas import AgentIdentity
from memledger.memory.schemas import ChatMessage
from memledger.memory.schemas import PointerIndex
from memledger.retrieval.blob_ingest import BlobIngestAdapter
from memledger.retrieval.store import RetrievalStore


@dataclass
class SessionState:
    """Everything known about one agent in this process.

    Never persisted; it can be rebuilt from the registry and blob store.
    ``latest_summary_ref`` is the newest chat-summary blob, while
    ``pointer_ref`` is the newest registry handle seen or written.
    ``pointer_unresolved`` is set while the last sync could not read the
    pointer or its index; writes then re-read the registry instead of
    trusting ``index``.
    """

    agent_id: str
    identity_ref: str
    identity: AgentIdentity
    store: RetrievalStore
    ingest: BlobIngestAdapter
    loaded_refs: set[str] = field(default_factory=set)
    recent_history: list[ChatMessage] = field(default_factory=list)
    latest_summary_ref: str | None = None
    pointer_ref: str | None = None
    index: PointerIndex | None = None
    pointer_unresolved: bool = False
