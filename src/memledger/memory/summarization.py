"""Buffered, single-flight chat summarization.

Each agent has a buffer of recent turns. Once it grows past the trigger
length a background job condenses it into a chat summary and persists it
through the pointer protocol. A per-agent lock set keeps at most one
summarization in flight; acquisition never waits.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from memledger.config import LLMConfig
from memledger.config import SummarizationConfig
from memledger.llm.adapters import LanguageModel
from memledger.llm.prompts import build_summary_messages
from memledger.llm.prompts import SUMMARY_SYSTEM_PROMPT
from memledger.memory.context import SessionContext
from memledger.memory.pointer import PointerProtocol
from memledger.memory.schemas import ChatMessage
from memledger.memory.schemas import SummaryInput
from memledger.memory.schemas import utc_now_iso
from memledger.memory.state import SessionState
from memledger.observability import track_latency

logger = logging.getLogger(__name__)


class SummarizationPipeline:
    """Condenses buffered chat turns into persisted chat summaries."""

    def __init__(
        self,
        context: SessionContext,
        pointer: PointerProtocol,
        llm: LanguageModel,
        config: SummarizationConfig | None = None,
        llm_config: LLMConfig | None = None,
    ) -> None:
        self._context = context
        self._pointer = pointer
        self._llm = llm
        self._config = config or SummarizationConfig()
        self._llm_config = llm_config or LLMConfig()

    def buffer(self, agent_id: str) -> list[ChatMessage]:
        """A copy of the agent's current buffer."""
        return list(self._context.buffers.get(agent_id, ()))

    def ensure_buffer(
        self,
        session: SessionState,
        supplied_history: Sequence[ChatMessage] | None = None,
    ) -> list[ChatMessage]:
        """Create the agent's buffer on first touch and return it.

        An empty buffer is seeded from *supplied_history* when given,
        otherwise from the session's recent history.
        """
        buffer = self._context.buffers.setdefault(session.agent_id, [])
        if not buffer:
            seed = supplied_history if supplied_history else session.recent_history
            buffer.extend(seed)
        session.recent_history = list(buffer)
        return buffer

    def record_exchange(
        self,
        session: SessionState,
        user_message: str,
        assistant_message: str,
    ) -> asyncio.Task[None] | None:
        """Append one user/assistant turn and maybe start a summary job."""
        buffer = self.ensure_buffer(session)
        buffer.append(ChatMessage(role="user", content=user_message))
        buffer.append(ChatMessage(role="assistant", content=assistant_message))
        session.recent_history = list(buffer)
        return self.maybe_schedule(session.agent_id)

    def maybe_schedule(self, agent_id: str) -> asyncio.Task[None] | None:
        buffer = self._context.buffers.get(agent_id)
        if not buffer or len(buffer) < self._config.trigger_length:
            return None
        if not self._context.summary_locks.try_acquire(agent_id):
            logger.debug("Summarization already running for agent %s", agent_id)
            return None
        try:
            return self._context.spawn(
                self._summarize_in_background(agent_id),
                name=f"summarize:{agent_id}",
            )
        except RuntimeError:
            self._context.summary_locks.release(agent_id)
            raise

    async def _summarize_in_background(self, agent_id: str) -> None:
        # The caller already holds the summary lock for agent_id.
        try:
            snapshot = list(self._context.buffers.get(agent_id, ()))
            summary = await self._summarize(snapshot)
            if not summary:
                logger.info("Empty summary for agent %s; buffer kept", agent_id)
                return
            result = await self._pointer.persist_summary(
                agent_id,
                SummaryInput(
                    label=f"Chat Summary - {utc_now_iso()}",
                    content=summary,
                    history=snapshot[-self._config.persisted_history :],
                ),
            )
            buffer = self._context.buffers.get(agent_id)
            if buffer is not None and len(buffer) >= self._config.trigger_length:
                del buffer[: -self._config.retained_after_trim]
            logger.info(
                "Background summary for agent %s committed as %s",
                agent_id,
                result.pointer_ref,
            )
        except Exception:
            logger.exception("Background summarization failed for agent %s", agent_id)
        finally:
            self._context.summary_locks.release(agent_id)

    async def flush(self, agent_id: str) -> str | None:
        """Summarize and persist whatever is buffered for *agent_id*.

        Returns the new pointer handle, or ``None`` when there was nothing
        to do (empty buffer, a summary already in flight, or an empty
        summary). Errors propagate.
        """
        buffer = self._context.buffers.get(agent_id)
        if not buffer:
            return None
        if not self._context.summary_locks.try_acquire(agent_id):
            logger.info("Flush skipped for agent %s: summary in flight", agent_id)
            return None

        try:
            snapshot = list(buffer)
            summary = await self._summarize(snapshot)
            if not summary:
                return None
            result = await self._pointer.persist_summary(
                agent_id,
                SummaryInput(
                    label=f"Chat Summary (End of Session) - {utc_now_iso()}",
                    content=summary,
                    history=snapshot[-self._config.persisted_history :],
                ),
            )
            self._context.buffers.pop(agent_id, None)
            logger.info("Flushed %d messages for agent %s", len(snapshot), agent_id)
            return result.pointer_ref
        finally:
            self._context.summary_locks.release(agent_id)

    async def _summarize(self, history: Sequence[ChatMessage]) -> str:
        with track_latency("summarization.complete"):
            summary = await self._llm.complete(
                SUMMARY_SYSTEM_PROMPT,
                build_summary_messages(history),
                temperature=self._llm_config.summary_temperature,
            )
        return summary.strip()
