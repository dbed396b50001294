"""Reconciliation of blobs superseded by a committed repoint.

Orphaned blobs are harmless, so deletion is best effort: a failed delete
is logged and retried on a later run until ``max_attempts`` is reached.
Deleting a ref that is already gone counts as success.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from memledger.config import CleanupConfig
from memledger.errors import BlobNotFoundError
from memledger.errors import CleanupFailure
from memledger.storage.blobstore import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    agent_id: str
    attempts: int = 0


class CleanupQueue:
    """Idempotent queue of superseded refs awaiting deletion."""

    def __init__(self, blob_store: BlobStore, config: CleanupConfig | None = None) -> None:
        self._blob_store = blob_store
        self._config = config or CleanupConfig()
        self._pending: dict[str, _Pending] = {}
        self._abandoned: set[str] = set()

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    @property
    def abandoned(self) -> list[str]:
        return sorted(self._abandoned)

    def schedule(self, agent_id: str, refs: Iterable[str | None]) -> None:
        """Queue *refs* for deletion; duplicates and ``None`` are ignored."""
        for ref in refs:
            if ref and ref not in self._pending and ref not in self._abandoned:
                self._pending[ref] = _Pending(agent_id=agent_id)

    def protect(self, refs: Iterable[str | None]) -> None:
        """Drop *refs* from the queue; they are live again."""
        for ref in refs:
            if ref:
                self._pending.pop(ref, None)

    async def run_once(self) -> list[str]:
        """Attempt every pending deletion once; return the refs removed."""
        removed: list[str] = []
        for ref, entry in list(self._pending.items()):
            if ref not in self._pending:
                continue
            entry.attempts += 1
            try:
                await self._blob_store.delete(ref)
            except BlobNotFoundError:
                pass
            except Exception as exc:
                failure = CleanupFailure(f"could not delete superseded blob {ref}: {exc}")
                if entry.attempts >= self._config.max_attempts:
                    self._pending.pop(ref, None)
                    self._abandoned.add(ref)
                    logger.warning(
                        "%s; giving up after %d attempts (agent %s)",
                        failure,
                        entry.attempts,
                        entry.agent_id,
                    )
                else:
                    logger.warning("%s; will retry (agent %s)", failure, entry.agent_id)
                continue
            self._pending.pop(ref, None)
            removed.append(ref)
            logger.info("Deleted superseded blob %s for agent %s", ref, entry.agent_id)
        return removed
