"""Unit tests for RetrievalStore dedup, search and persistence."""

from __future__ import annotations

import asyncio
import json

import pytest

from memledger.retrieval.schemas import AddDocumentOptions
from memledger.retrieval.store import RetrievalStore

ALLOW_DUPLICATES = AddDocumentOptions(prevent_duplicates=False)


@pytest.fixture()
def store_path(tmp_path):
    return tmp_path / "agents" / "rag" / "agent-1.json"


@pytest.fixture()
def store(store_path, embedding) -> RetrievalStore:
    return RetrievalStore(store_path, embedding)


class TestAddDocument:
    async def test_near_duplicate_is_rejected(self, store) -> None:
        first = await store.add_document("The sky is blue.")
        assert first is not None

        assert await store.add_document("The sky is blue.") is None
        assert await store.add_document("  the SKY is blue  ") is None
        assert store.count == 1

    async def test_duplicates_allowed_when_prevention_disabled(self, store) -> None:
        first = await store.add_document("The sky is blue.", {}, ALLOW_DUPLICATES)
        second = await store.add_document("The sky is blue.", {}, ALLOW_DUPLICATES)

        assert first is not None and second is not None
        assert first != second
        assert store.count == 2

    async def test_dissimilar_content_is_kept(self, store) -> None:
        await store.add_document("amber lantern glow")
        await store.add_document("river stone bridge")
        assert store.count == 2

    async def test_threshold_controls_duplicate_detection(self, store) -> None:
        await store.add_document("amber lantern glow")
        # similarity of "amber lantern" to "amber lantern glow" is about 0.82
        lenient = AddDocumentOptions(duplicate_threshold=0.95)
        assert await store.add_document("amber lantern", options=lenient) is not None
        assert await store.add_document("amber lantern glow again") is None

    async def test_blank_content_is_ignored(self, store, encoder) -> None:
        assert await store.add_document("   \n ") is None
        assert store.count == 0
        assert encoder.calls == 0

    async def test_content_is_trimmed_and_metadata_defaulted(self, store) -> None:
        doc_id = await store.add_document("  Core: never trust the ferryman  ", {"label": "rule"})
        doc = store.get(doc_id)

        assert doc.content == "Core: never trust the ferryman"
        assert doc.metadata["label"] == "rule"
        assert doc.metadata["type"] == "memory"
        assert isinstance(doc.metadata["timestamp"], str)

    async def test_concurrent_duplicate_inserts_store_once(self, store) -> None:
        ids = await asyncio.gather(
            *(store.add_document("the tower bell rang twice") for _ in range(4))
        )
        assert sum(1 for doc_id in ids if doc_id is not None) == 1
        assert store.count == 1


class TestSearch:
    @pytest.fixture()
    async def seeded(self, store) -> RetrievalStore:
        for text in ("amber lantern glow", "amber lantern", "river stone bridge"):
            await store.add_document(text, {}, ALLOW_DUPLICATES)
        return store

    async def test_results_meet_threshold_and_are_sorted(self, seeded) -> None:
        results = await seeded.search("amber lantern", limit=10, threshold=0.7)

        assert [r.document.content for r in results] == [
            "amber lantern",
            "amber lantern glow",
        ]
        assert all(r.similarity >= 0.7 for r in results)
        assert results[0].similarity >= results[1].similarity

    async def test_limit_truncates(self, seeded) -> None:
        results = await seeded.search("amber lantern", limit=1, threshold=0.7)
        assert len(results) == 1
        assert results[0].document.content == "amber lantern"

    async def test_falls_back_to_unfiltered_ranking(self, seeded) -> None:
        results = await seeded.search("amber", limit=2, threshold=0.99)

        assert len(results) == 2
        assert all(r.similarity < 0.99 for r in results)
        assert {r.document.content for r in results} == {
            "amber lantern",
            "amber lantern glow",
        }

    async def test_empty_store_returns_nothing(self, store) -> None:
        assert await store.search("anything") == []


class TestCoreMemories:
    async def test_core_prefixed_documents_newest_first(self, store) -> None:
        await store.add_document("Core: the well is poisoned", {"timestamp": "2024-01-01T00:00:00+00:00"})
        await store.add_document("Core: the miller lies", {"timestamp": "2025-06-01T00:00:00+00:00"})
        await store.add_document("an ordinary afternoon")

        core = await store.get_core_memories()

        assert [r.document.content for r in core] == [
            "Core: the miller lies",
            "Core: the well is poisoned",
        ]
        assert all(r.similarity == 1.0 for r in core)


class TestPersistence:
    async def test_missing_file_starts_empty(self, store) -> None:
        await store.initialize()
        assert store.count == 0

    async def test_documents_survive_reload(self, store, store_path, embedding) -> None:
        doc_id = await store.add_document("the bridge toll is three coins")

        payload = json.loads(store_path.read_text(encoding="utf-8"))
        assert [entry[0] for entry in payload["documents"]] == [doc_id]
        assert [entry[0] for entry in payload["vectors"]] == [doc_id]

        reloaded = RetrievalStore(store_path, embedding)
        await reloaded.initialize()
        assert reloaded.count == 1
        assert reloaded.get(doc_id).content == "the bridge toll is three coins"

    async def test_corrupt_file_propagates(self, store_path, embedding) -> None:
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(json.JSONDecodeError):
            await RetrievalStore(store_path, embedding).initialize()

    async def test_wipe_persists_empty_state(self, store, store_path) -> None:
        await store.add_document("to be forgotten")
        await store.wipe()

        assert store.count == 0
        payload = json.loads(store_path.read_text(encoding="utf-8"))
        assert payload == {"documents": [], "vectors": []}
