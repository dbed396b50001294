"""Blob ingestion into a retrieval store, with provenance tagging.

Two distinct notions of "duplicate" meet here: ``has_blob`` is a
reference-level check (was this exact ref ingested before?) while
``RetrievalStore.add_document`` applies a content-similarity check.
They can disagree, e.g. the same text stored under two refs.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from memledger.retrieval.schemas import AddDocumentOptions
from memledger.retrieval.schemas import BlobReference
from memledger.retrieval.schemas import IngestOptions
from memledger.retrieval.schemas import IngestResult
from memledger.retrieval.store import RetrievalStore
from memledger.storage.blobstore import BlobStore
from memledger.storage.blobstore import decode_bytes

logger = logging.getLogger(__name__)

KIND_BLOB = "blob"
KIND_CONTAINER_PATCH = "containerPatch"
DEFAULT_SOURCE = "blob-store"


def build_provenance_metadata(
    kind: str,
    details: dict[str, Any],
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Merge *details* into the ``provenance`` entry of *metadata*."""
    resolved = dict(metadata or {})
    if not isinstance(resolved.get("source"), str):
        resolved["source"] = DEFAULT_SOURCE
    existing = resolved.get("provenance")
    resolved["provenance"] = {
        **(existing if isinstance(existing, dict) else {}),
        "kind": kind,
        **details,
    }
    return resolved


class BlobIngestAdapter:
    """Pulls blob-store content into a ``RetrievalStore``."""

    def __init__(self, store: RetrievalStore) -> None:
        self._store = store

    @property
    def store(self) -> RetrievalStore:
        return self._store

    async def has_blob(self, ref: str) -> bool:
        """True iff a stored document's provenance ref equals *ref*."""
        await self._store.load()
        return any(doc.provenance_ref == ref for doc in self._store.documents())

    async def ingest_blob_by_id(
        self,
        client: BlobStore,
        ref: str,
        options: IngestOptions | None = None,
    ) -> str | None:
        """Fetch blob *ref* and add it as a document.

        Returns ``None`` without touching *client* when *ref* was already
        ingested.
        """
        if await self.has_blob(ref):
            logger.debug("Blob %s already ingested; skipping fetch", ref)
            return None

        options = options or IngestOptions()
        raw = await client.read(ref)
        content = decode_bytes(raw)
        metadata = build_provenance_metadata(KIND_BLOB, {"ref": ref}, options.metadata)
        return await self._store.add_document(
            content, metadata, self._add_options(options)
        )

    async def ingest_many(
        self,
        client: BlobStore,
        refs: Sequence[BlobReference | str],
        options: IngestOptions | None = None,
    ) -> list[IngestResult]:
        """Ingest *refs* one at a time; a failure only marks its own result."""
        options = options or IngestOptions()
        results: list[IngestResult] = []

        for item in refs:
            reference = item if isinstance(item, BlobReference) else BlobReference(ref=item)
            item_options = options.model_copy(
                update={"metadata": {**options.metadata, **reference.object_metadata()}}
            )
            try:
                document_id = await self.ingest_blob_by_id(
                    client, reference.ref, item_options
                )
            except Exception as exc:
                logger.warning("Failed to ingest blob %s: %s", reference.ref, exc)
                results.append(
                    IngestResult(
                        ref=reference.ref,
                        object_id=reference.object_id,
                        document_id=None,
                        error=str(exc) or type(exc).__name__,
                    )
                )
                continue
            results.append(
                IngestResult(
                    ref=reference.ref,
                    object_id=reference.object_id,
                    document_id=document_id,
                )
            )

        return results

    async def ingest_container_part(
        self,
        client: BlobStore,
        container_ref: str,
        part_id: str,
        options: IngestOptions | None = None,
    ) -> str | None:
        """Add one named part of a container as a document."""
        options = options or IngestOptions()
        part = await client.read_part(part_id)
        content = decode_bytes(part.contents)
        metadata = build_provenance_metadata(
            KIND_CONTAINER_PATCH,
            {
                "ref": part_id,
                "container": container_ref,
                "identifier": part.identifier,
                "tags": dict(part.tags),
            },
            options.metadata,
        )
        return await self._store.add_document(
            content, metadata, self._add_options(options)
        )

    @staticmethod
    def _add_options(options: IngestOptions) -> AddDocumentOptions:
        return AddDocumentOptions(
            prevent_duplicates=options.prevent_duplicates,
            duplicate_threshold=options.duplicate_threshold,
        )
