"""File-backed document and vector store with linear-scan search.

The whole store lives in a single JSON file::

    {"documents": [[id, document], ...], "vectors": [[id, vector], ...]}

Every mutation rewrites the file (temp file + atomic replace).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Iterator
from datetime import datetime
from datetime import timezone
from pathlib import Path
from typing import Any

from memledger.retrieval.embedding import EmbeddingEngine
from memledger.retrieval.embedding import EmbeddingVector
from memledger.retrieval.schemas import AddDocumentOptions
from memledger.retrieval.schemas import Document
from memledger.retrieval.schemas import SearchResult

logger = logging.getLogger(__name__)

CORE_MEMORY_PREFIX = "Core:"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", delete=False, dir=str(path.parent)
    ) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


class RetrievalStore:
    """Persistent document + vector map owned by exactly one agent."""

    def __init__(
        self,
        storage_path: str | Path,
        embedding: EmbeddingEngine,
        *,
        default_options: AddDocumentOptions | None = None,
    ) -> None:
        self._path = Path(storage_path)
        self._embedding = embedding
        self._default_options = default_options or AddDocumentOptions()
        self._documents: dict[str, Document] = {}
        self._vectors: dict[str, EmbeddingVector] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def storage_path(self) -> Path:
        return self._path

    @property
    def embedding(self) -> EmbeddingEngine:
        return self._embedding

    @property
    def count(self) -> int:
        return len(self._documents)

    # -- lifecycle --

    async def initialize(self) -> None:
        """Load the persisted store and the embedding model."""
        await asyncio.gather(self.load(), self._embedding.initialize())

    async def load(self) -> None:
        """Load the persisted store once; a missing file means empty."""
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            try:
                raw = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
            except FileNotFoundError:
                self._documents.clear()
                self._vectors.clear()
            else:
                payload = json.loads(raw)
                self._documents = {
                    doc_id: Document.model_validate(doc)
                    for doc_id, doc in payload.get("documents") or []
                }
                self._vectors = {
                    doc_id: [float(v) for v in vector]
                    for doc_id, vector in payload.get("vectors") or []
                }
                logger.debug(
                    "Loaded %d documents from %s", len(self._documents), self._path
                )
            self._loaded = True

    # -- read --

    def documents(self) -> Iterator[Document]:
        """Iterate over stored documents (load first)."""
        return iter(list(self._documents.values()))

    def get(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def search(
        self,
        query: str,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[SearchResult]:
        """Rank every stored vector against *query* by cosine similarity.

        Results at or above *threshold* are preferred; when none qualify the
        unfiltered ranking is returned instead.
        """
        await self.initialize()
        query_vector = await self._embedding.embed(query)

        scored: list[SearchResult] = []
        for doc_id, vector in list(self._vectors.items()):
            document = self._documents.get(doc_id)
            if document is None:
                continue
            similarity = self._embedding.cosine_similarity(query_vector, vector)
            scored.append(
                SearchResult(id=doc_id, similarity=similarity, document=document)
            )

        filtered = [r for r in scored if r.similarity >= threshold]
        ranked = filtered if filtered else scored
        ranked.sort(key=lambda r: r.similarity, reverse=True)
        return ranked[: max(limit, 0)]

    async def get_core_memories(self) -> list[SearchResult]:
        """Documents whose content starts with ``Core:``, newest first."""
        await self.load()
        results = [
            SearchResult(id=doc.id, similarity=1.0, document=doc)
            for doc in self._documents.values()
            if doc.content.startswith(CORE_MEMORY_PREFIX)
        ]

        def _timestamp(result: SearchResult) -> str:
            value = result.document.metadata.get("timestamp")
            return value if isinstance(value, str) else ""

        results.sort(key=_timestamp, reverse=True)
        return results

    # -- write --

    async def add_document(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        options: AddDocumentOptions | None = None,
    ) -> str | None:
        """Embed and store *content*; return its id, or ``None`` if skipped."""
        trimmed = content.strip()
        if not trimmed:
            return None

        await self.initialize()
        resolved = options or self._default_options

        async with self._write_lock:
            if resolved.prevent_duplicates and self._vectors:
                duplicates = await self.search(
                    trimmed, 1, resolved.duplicate_threshold
                )
                if duplicates and duplicates[0].similarity >= resolved.duplicate_threshold:
                    logger.debug(
                        "Skipping near-duplicate of %s (similarity %.3f)",
                        duplicates[0].id,
                        duplicates[0].similarity,
                    )
                    return None

            vector = await self._embedding.embed(trimmed)
            document_id = str(uuid.uuid4())
            while document_id in self._documents:
                document_id = str(uuid.uuid4())

            self._documents[document_id] = Document(
                id=document_id,
                content=trimmed,
                metadata=self._with_metadata_defaults(metadata),
            )
            self._vectors[document_id] = vector
            await self._save()

        return document_id

    async def wipe(self) -> None:
        """Remove every document and persist the empty store."""
        await self.load()
        async with self._write_lock:
            self._documents.clear()
            self._vectors.clear()
            await self._save()

    # -- internal --

    async def _save(self) -> None:
        payload = {
            "documents": [
                [doc_id, doc.model_dump(mode="json")]
                for doc_id, doc in self._documents.items()
            ],
            "vectors": [
                [doc_id, vector] for doc_id, vector in self._vectors.items()
            ],
        }
        text = json.dumps(payload, ensure_ascii=False, indent=2)
        await asyncio.to_thread(_write_atomic, self._path, text)

    @staticmethod
    def _with_metadata_defaults(metadata: dict[str, Any] | None) -> dict[str, Any]:
        resolved = dict(metadata or {})
        if not isinstance(resolved.get("timestamp"), str):
            resolved["timestamp"] = utc_now_iso()
        if not isinstance(resolved.get("type"), str):
            resolved["type"] = "memory"
        return resolved
