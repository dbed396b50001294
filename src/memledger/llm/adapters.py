"""Language-generation adapters and factory helpers."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Protocol
from typing import runtime_checkable
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from memledger.config import LLMConfig
from memledger.errors import LLMError
from memledger.errors import NotConfiguredError
from memledger.memory.schemas import ChatMessage
from memledger.observability import track_latency


@runtime_checkable
class LanguageModel(Protocol):
    """A prompt-to-text function: system prompt plus ordered messages."""

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        *,
        temperature: float | None = None,
    ) -> str: ...


class NoopLanguageModel(LanguageModel):
    """Deterministic adapter that always returns an empty completion."""

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        *,
        temperature: float | None = None,
    ) -> str:
        del system_prompt, messages, temperature
        return ""


class OpenAICompatibleLanguageModel(LanguageModel):
    """OpenAI-compatible chat-completions adapter (no client-side timeout)."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.4,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._temperature = temperature

    async def complete(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        *,
        temperature: float | None = None,
    ) -> str:
        payload_messages = [{"role": "system", "content": system_prompt}]
        payload_messages.extend(
            {"role": m.role, "content": m.content} for m in messages
        )
        with track_latency("llm.complete"):
            return await asyncio.to_thread(
                self._complete_sync,
                payload_messages,
                temperature=self._temperature if temperature is None else temperature,
            )

    def _complete_sync(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
    ) -> str:
        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
        }
        request = Request(
            url=f"{self._base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"provider HTTP {exc.code}: {detail[:200]}") from exc
        except URLError as exc:
            raise LLMError(f"provider network error: {exc.reason}") from exc
        except OSError as exc:
            raise LLMError(f"provider IO error: {exc}") from exc

        try:
            data = json.loads(raw)
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise LLMError(
                "provider response missing choices[0].message.content"
            ) from exc

        if isinstance(content, str):
            return content.strip()
        raise LLMError("provider response content must be a string")


def build_language_model(config: LLMConfig) -> LanguageModel:
    """Create a concrete adapter from ``LLMConfig``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise NotConfiguredError(
                "llm.api_key is required when provider='openai'"
            )
        return OpenAICompatibleLanguageModel(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            temperature=config.chat_temperature,
        )
    if provider == "noop":
        return NoopLanguageModel()
    raise ValueError(
        f"Unsupported llm.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )
