"""Unit tests for superseded-blob reconciliation."""

from __future__ import annotations

import logging

from memledger.config import CleanupConfig
from memledger.memory.cleanup import CleanupQueue
from memledger.memory.pointer import PointerProtocol
from memledger.memory.schemas import SummaryInput


async def _put(blob_store, data: bytes, *, deletable: bool = True) -> str:
    return await blob_store.write(data, retention=1, deletable=deletable)


class TestCleanupQueue:
    async def test_deletes_scheduled_refs(self, blob_store) -> None:
        queue = CleanupQueue(blob_store)
        ref = await _put(blob_store, b"old index")

        queue.schedule("a", [ref, None, ref])
        removed = await queue.run_once()

        assert removed == [ref]
        assert ref not in blob_store
        assert queue.pending == []

    async def test_already_deleted_counts_as_success(self, blob_store) -> None:
        queue = CleanupQueue(blob_store)
        queue.schedule("a", ["never-existed"])

        assert await queue.run_once() == ["never-existed"]
        assert queue.pending == []

    async def test_failures_retry_then_give_up(self, blob_store, caplog) -> None:
        queue = CleanupQueue(blob_store, CleanupConfig(max_attempts=2))
        ref = await _put(blob_store, b"pinned", deletable=False)
        queue.schedule("a", [ref])

        with caplog.at_level(logging.WARNING, logger="memledger.memory.cleanup"):
            assert await queue.run_once() == []
            assert queue.pending == [ref]
            assert await queue.run_once() == []

        assert queue.pending == []
        assert queue.abandoned == [ref]
        assert "giving up after 2 attempts" in caplog.text
        assert ref in blob_store

    async def test_protected_refs_are_not_deleted(self, blob_store) -> None:
        queue = CleanupQueue(blob_store)
        ref = await _put(blob_store, b"still live")
        queue.schedule("a", [ref])

        queue.protect([ref])

        assert await queue.run_once() == []
        assert ref in blob_store

    async def test_disabled_cleanup_keeps_old_blobs(
        self, context, blob_store, registry
    ) -> None:
        queue = CleanupQueue(blob_store)
        pointer = PointerProtocol(
            context,
            blob_store,
            registry,
            cleanup=queue,
            cleanup_config=CleanupConfig(enabled=False),
        )
        first = await pointer.persist_summary("a", SummaryInput(label="1", content="one"))
        await pointer.persist_summary("a", SummaryInput(label="2", content="two"))
        await context.drain()

        assert first.content_ref in blob_store
        assert queue.pending == []
