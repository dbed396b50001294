"""Tolerant decoding of stored documents.

An object in the blob store may be a single blob or a container whose
first part holds the document. Callers pass an ordered tuple of
``Representation`` values; each attempt either yields a typed
``Decoded`` value or records why it failed. When every attempt fails a
``RetrievalFailure`` lists all of the reasons.

Pointer payloads are classified into a tagged union: an
``IndexedPointer`` (versioned index) or a ``LegacySummaryPointer`` (flat
chat summary written before indexes existed).
"""

from __future__ import annotations

import json
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from typing import Generic
from typing import TypeVar

from memledger.errors import RetrievalFailure
from memledger.memory.schemas import AgentIdentity
from memledger.memory.schemas import ChatSummaryDocument
from memledger.memory.schemas import PointerIndex
from memledger.storage.blobstore import BlobStore
from memledger.storage.blobstore import decode_bytes

T = TypeVar("T")


class Representation(str, Enum):
    """How an object is laid out in the blob store."""

    SINGLE_OBJECT = "single-object"
    CONTAINER_PART = "container-part"


CONTAINER_FIRST = (Representation.CONTAINER_PART, Representation.SINGLE_OBJECT)
SINGLE_FIRST = (Representation.SINGLE_OBJECT, Representation.CONTAINER_PART)


@dataclass(frozen=True)
class Decoded(Generic[T]):
    """A successfully decoded object and the layout it was found in."""

    ref: str
    representation: Representation
    value: T


async def _read_single(client: BlobStore, ref: str) -> str:
    return decode_bytes(await client.read(ref))


async def _read_first_part(client: BlobStore, ref: str) -> str:
    parts = await client.list_parts(ref)
    if not parts:
        raise ValueError("container has no parts")
    part = await client.read_part(parts[0].part_id)
    return decode_bytes(part.contents)


_READERS: dict[Representation, Callable[[BlobStore, str], Awaitable[str]]] = {
    Representation.SINGLE_OBJECT: _read_single,
    Representation.CONTAINER_PART: _read_first_part,
}


async def decode_object(
    client: BlobStore,
    ref: str,
    order: tuple[Representation, ...],
    parse: Callable[[str], T],
) -> Decoded[T]:
    """Try each representation in *order* until read and *parse* succeed."""
    errors: list[str] = []
    for representation in order:
        try:
            text = await _READERS[representation](client, ref)
            value = parse(text)
        except Exception as exc:
            errors.append(f"{representation.value}: {exc}")
            continue
        return Decoded(ref=ref, representation=representation, value=value)
    raise RetrievalFailure(ref, errors)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_identity(text: str) -> AgentIdentity:
    """Parse a bare identity or an ``{id, createdAt, identity}`` envelope."""
    data = json.loads(text)
    if isinstance(data, dict) and isinstance(data.get("identity"), dict):
        data = data["identity"]
    return AgentIdentity.model_validate(data)


@dataclass(frozen=True)
class IndexedPointer:
    index: PointerIndex


@dataclass(frozen=True)
class LegacySummaryPointer:
    summary: ChatSummaryDocument


PointerPayload = IndexedPointer | LegacySummaryPointer

_INDEX_KEYS = frozenset({"version", "chat", "rpg"})
_LEGACY_KEYS = frozenset({"label", "content", "history"})


def classify_pointer_payload(text: str) -> PointerPayload:
    """Decide which pointer format *text* holds.

    Raises ``ValueError`` when the payload matches neither shape.
    """
    data: Any = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("pointer payload is not an object")
    if _INDEX_KEYS <= data.keys():
        return IndexedPointer(index=PointerIndex.model_validate(data))
    if _LEGACY_KEYS & data.keys():
        return LegacySummaryPointer(summary=ChatSummaryDocument.model_validate(data))
    raise ValueError(
        f"unrecognized pointer payload keys: {sorted(data.keys())}"
    )


def parse_chat_summary(text: str) -> ChatSummaryDocument:
    return ChatSummaryDocument.model_validate(json.loads(text))
