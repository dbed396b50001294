"""Pointer registry collaborators.

The registry holds exactly one mutable pointer per agent. Repointing is
the commit point of every copy-on-write index update.
"""

from __future__ import annotations

import logging
from typing import Protocol
from typing import runtime_checkable

from pydantic import BaseModel
from redis.asyncio import Redis  # type: ignore[import-untyped]

from memledger.config import RegistryConfig
from memledger.errors import NotConfiguredError
from memledger.observability import track_latency

logger = logging.getLogger(__name__)


class TxResult(BaseModel):
    """Outcome of a committed repoint."""

    agent_id: str
    ref: str
    digest: str


@runtime_checkable
class Registry(Protocol):
    """Transactional per-agent pointer storage."""

    async def get_pointer(self, agent_id: str) -> str | None: ...

    async def set_pointer(self, agent_id: str, ref: str) -> TxResult: ...


class InMemoryRegistry:
    """Process-local registry; each repoint bumps a per-agent version."""

    def __init__(self) -> None:
        self._pointers: dict[str, str] = {}
        self._versions: dict[str, int] = {}

    async def get_pointer(self, agent_id: str) -> str | None:
        return self._pointers.get(agent_id)

    async def set_pointer(self, agent_id: str, ref: str) -> TxResult:
        version = self._versions.get(agent_id, 0) + 1
        self._versions[agent_id] = version
        self._pointers[agent_id] = ref
        return TxResult(agent_id=agent_id, ref=ref, digest=f"{agent_id}:{version}")


class RedisRegistry:
    """Redis-backed registry.

    ``{prefix}:pointer:{agent_id}`` holds the current ref and
    ``{prefix}:pointer_version:{agent_id}`` counts repoints. Both are
    updated in one MULTI/EXEC transaction.
    """

    def __init__(self, redis: Redis, *, key_prefix: str = "memledger") -> None:
        self._redis = redis
        self._prefix = key_prefix

    def _pointer_key(self, agent_id: str) -> str:
        return f"{self._prefix}:pointer:{agent_id}"

    def _version_key(self, agent_id: str) -> str:
        return f"{self._prefix}:pointer_version:{agent_id}"

    async def get_pointer(self, agent_id: str) -> str | None:
        with track_latency("registry.get_pointer"):
            raw = await self._redis.get(self._pointer_key(agent_id))
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else str(raw)

    async def set_pointer(self, agent_id: str, ref: str) -> TxResult:
        with track_latency("registry.set_pointer"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._pointer_key(agent_id), ref)
                pipe.incr(self._version_key(agent_id))
                _, version = await pipe.execute()
        logger.info("Repointed agent %s to %s (version %s)", agent_id, ref, version)
        return TxResult(agent_id=agent_id, ref=ref, digest=f"{agent_id}:{version}")

    async def close(self) -> None:
        await self._redis.aclose()


def build_registry(config: RegistryConfig) -> RedisRegistry:
    """Create a ``RedisRegistry`` from ``RegistryConfig``."""
    if not config.redis_url:
        raise NotConfiguredError("registry.redis_url is required")
    return RedisRegistry(Redis.from_url(config.redis_url), key_prefix=config.key_prefix)
