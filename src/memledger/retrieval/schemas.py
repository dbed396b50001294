"""Retrieval domain data models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic import Field


class Document(BaseModel):
    """A piece of text held by a retrieval store."""

    id: str = Field(description="Unique identifier within the owning store.")
    content: str = Field(description="Trimmed textual content.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Open metadata map (timestamp, type, source, provenance, ...).",
    )

    @property
    def provenance_ref(self) -> str | None:
        """Reference of the external object this document came from."""
        provenance = self.metadata.get("provenance")
        if isinstance(provenance, dict):
            ref = provenance.get("ref")
            return ref if isinstance(ref, str) else None
        return None


class SearchResult(BaseModel):
    """One scored hit from ``RetrievalStore.search``."""

    id: str
    similarity: float
    document: Document


class AddDocumentOptions(BaseModel):
    """Duplicate handling for ``RetrievalStore.add_document``."""

    prevent_duplicates: bool = True
    duplicate_threshold: float = 0.8


class IngestOptions(AddDocumentOptions):
    """``AddDocumentOptions`` plus metadata merged into ingested documents."""

    metadata: dict[str, Any] = Field(default_factory=dict)


class BlobReference(BaseModel):
    """A blob to ingest, with optional object-level details."""

    ref: str
    object_id: str | None = None
    registered_epoch: int | None = None
    size: int | None = None
    deletable: bool | None = None

    def object_metadata(self) -> dict[str, Any]:
        details = {
            "object_id": self.object_id,
            "registered_epoch": self.registered_epoch,
            "size": self.size,
            "deletable": self.deletable,
        }
        return {f"blob_{k}": v for k, v in details.items() if v is not None}


class IngestResult(BaseModel):
    """Per-ref outcome of ``BlobIngestAdapter.ingest_many``."""

    ref: str
    object_id: str | None = None
    document_id: str | None = None
    error: str | None = None
