"""Memory domain data models and wire formats.

Stored documents (identities, chat summaries, pointer indexes) use
camelCase keys on the wire; models accept either spelling and dump with
``by_alias=True``.
"""

from __future__ import annotations

import time
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Base for documents persisted to the blob store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2).encode(
            "utf-8"
        )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """One conversational turn."""

    role: Literal["user", "assistant", "system"]
    content: str


class SummaryInput(BaseModel):
    """What ``PointerProtocol.persist_summary`` writes."""

    label: str
    content: str
    history: list[ChatMessage] | None = None


class ChatSummaryDocument(WireModel):
    """``{agentId, label, content, history, createdAt}``."""

    agent_id: str | None = None
    label: str | None = None
    content: str | None = None
    history: list[ChatMessage] | None = None
    created_at: str = Field(default_factory=utc_now_iso)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class MemorySource(WireModel):
    """An external object an identity asks to have ingested."""

    id: str = ""
    kind: Literal["blob", "containerPatch"] = "blob"
    ref: str | None = None
    description: str | None = None

    def key(self) -> str:
        """Stable dedup key for ``SessionState.loaded_refs``."""
        if self.id:
            return self.id
        if self.ref and self.kind == "blob":
            return f"blob:{self.ref}"
        if self.ref:
            return f"container:{self.ref}"
        raise ValueError("memory source is missing identifiers")


class CuratedSummary(WireModel):
    label: str = ""
    content: str
    timestamp: str | None = None


class Persona(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    demeanor: str = ""
    motto: str = ""
    traits: list[str] = Field(default_factory=list)
    goals: list[str] = Field(default_factory=list)


class ChatProfile(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    system_prompt: str = ""
    guardrails: list[str] = Field(default_factory=list)
    quick_facts: list[str] = Field(default_factory=list)


class AgentIdentity(WireModel):
    """An agent's identity document; unknown fields are preserved."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    version: int = 1
    name: str
    archetype: str = ""
    persona: Persona = Field(default_factory=Persona)
    chat: ChatProfile = Field(default_factory=ChatProfile)
    memory_sources: list[MemorySource] = Field(default_factory=list)
    curated_summaries: list[CuratedSummary] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pointer index
# ---------------------------------------------------------------------------


class ChatSection(WireModel):
    latest_summary_ref: str | None = None
    last_updated: str = Field(default_factory=utc_now_iso)


class ActiveRun(WireModel):
    ref: str
    last_updated: str = Field(default_factory=utc_now_iso)


class PastRun(WireModel):
    ref: str
    timestamp: str = Field(default_factory=utc_now_iso)
    outcome_floor: int = 0
    victory: bool = False


class RpgSection(WireModel):
    active_run: ActiveRun | None = None
    past_runs: list[PastRun] = Field(default_factory=list)


class PointerIndex(WireModel):
    """The versioned document an agent's registry pointer refers to."""

    version: int = 1
    chat: ChatSection = Field(default_factory=ChatSection)
    rpg: RpgSection = Field(default_factory=RpgSection)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class RunOutcome(BaseModel):
    """A finished run: its final state and how it ended."""

    state: dict[str, Any] = Field(default_factory=dict)
    outcome_floor: int = 0
    victory: bool = False


class RunSnapshot(WireModel):
    """Blob payload written for active and finished runs."""

    agent_id: str
    state: dict[str, Any] = Field(default_factory=dict)
    saved_at: float = Field(default_factory=time.time)
