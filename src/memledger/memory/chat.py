"""Grounded chat exchange over an agent's session."""

from __future__ import annotations

import logging

from pydantic import BaseModel
from pydantic import Field

from memledger.config import LLMConfig
from memledger.config import RetrievalConfig
from memledger.llm.adapters import LanguageModel
from memledger.llm.prompts import build_chat_prompt
from memledger.llm.prompts import build_system_prompt
from memledger.memory.schemas import ChatMessage
from memledger.memory.session import SessionCache
from memledger.memory.summarization import SummarizationPipeline
from memledger.observability import track_latency
from memledger.retrieval.schemas import SearchResult

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    agent_id: str = Field(min_length=1)
    identity_ref: str = Field(min_length=1)
    message: str = Field(min_length=1)
    history: list[ChatMessage] | None = Field(
        default=None,
        description="Caller-held history, used only to seed an empty buffer.",
    )
    latest_summary_ref: str | None = None


class ChatResponse(BaseModel):
    answer: str
    context: list[SearchResult] = Field(default_factory=list)
    summarization_scheduled: bool = False


class ChatService:
    """Answers one message in character and records the exchange."""

    def __init__(
        self,
        sessions: SessionCache,
        summarizer: SummarizationPipeline,
        llm: LanguageModel,
        *,
        retrieval_config: RetrievalConfig | None = None,
        llm_config: LLMConfig | None = None,
    ) -> None:
        self._sessions = sessions
        self._summarizer = summarizer
        self._llm = llm
        self._retrieval_config = retrieval_config or RetrievalConfig()
        self._llm_config = llm_config or LLMConfig()

    async def respond(self, request: ChatRequest) -> ChatResponse:
        """Generate a reply without waiting for any summarization it triggers."""
        session = await self._sessions.load_session(
            request.agent_id,
            request.identity_ref,
            skip_sync=True,
            known_latest_summary_ref=request.latest_summary_ref,
        )
        buffer = self._summarizer.ensure_buffer(session, request.history)

        with track_latency("chat.search"):
            context = await session.store.search(
                request.message,
                limit=self._retrieval_config.chat_context_limit,
                threshold=self._retrieval_config.chat_context_threshold,
            )

        messages = list(buffer)
        messages.append(
            ChatMessage(role="user", content=build_chat_prompt(request.message, context))
        )
        answer = await self._llm.complete(
            build_system_prompt(session.identity),
            messages,
            temperature=self._llm_config.chat_temperature,
        )

        job = self._summarizer.record_exchange(session, request.message, answer)
        if job is not None:
            logger.info("Summarization scheduled for agent %s", request.agent_id)
        return ChatResponse(
            answer=answer,
            context=context,
            summarization_scheduled=job is not None,
        )
