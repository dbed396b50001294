"""Exception taxonomy shared across memledger subsystems."""

from __future__ import annotations


class MemledgerError(Exception):
    """Base class for all memledger errors."""


class NotConfiguredError(MemledgerError, ValueError):
    """A required external collaborator has no configuration."""


class RetrievalFailure(MemledgerError):
    """Every decode attempt for a stored object failed."""

    def __init__(self, ref: str, errors: list[str] | None = None) -> None:
        self.ref = ref
        self.errors = list(errors or [])
        detail = "; ".join(self.errors) if self.errors else "no decode attempts"
        super().__init__(f"retrieval failed for {ref}: {detail}")


class DimensionMismatchError(MemledgerError, ValueError):
    """Two embedding vectors of different length were compared."""


class ModelLoadError(MemledgerError):
    """The embedding model could not be loaded."""


class BlobStoreError(MemledgerError):
    """A blob store read, write, or delete failed."""


class BlobNotFoundError(BlobStoreError):
    """The requested reference does not exist in the blob store."""


class RegistryWriteFailure(MemledgerError):
    """The registry repoint failed after the content blob was written.

    ``orphaned_ref`` names the blob that was written but never committed.
    """

    def __init__(self, agent_id: str, orphaned_ref: str, reason: str) -> None:
        self.agent_id = agent_id
        self.orphaned_ref = orphaned_ref
        super().__init__(
            f"registry repoint failed for agent {agent_id} "
            f"(orphaned ref {orphaned_ref}): {reason}"
        )


class CleanupFailure(MemledgerError):
    """Deleting a superseded blob failed. Logged, never propagated."""


class LLMError(MemledgerError):
    """Raised by language-model adapters when a call fails."""
