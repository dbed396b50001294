"""Prompt construction for summarization and grounded chat replies."""

from __future__ import annotations

from collections.abc import Sequence

from memledger.memory.schemas import AgentIdentity
from memledger.memory.schemas import ChatMessage
from memledger.retrieval.schemas import SearchResult

SUMMARY_SYSTEM_PROMPT = "\n".join(
    [
        "Summarize the following conversation segment into a concise, factual memory log.",
        "Focus on key events, facts learned, and decisions made.",
        'Do not include "User said" or "AI said"; write it as a narrative or list of facts.',
    ]
)


def build_summary_messages(history: Sequence[ChatMessage]) -> list[ChatMessage]:
    """Render *history* as one transcript message for the summarizer."""
    transcript = "\n".join(f"{m.role.upper()}: {m.content}" for m in history)
    return [ChatMessage(role="user", content=transcript)]


def build_system_prompt(identity: AgentIdentity) -> str:
    """Persona prompt for an agent's chat replies."""
    lines: list[str] = []
    if identity.chat.system_prompt:
        lines.append(identity.chat.system_prompt)
    lines.append(f"You are {identity.name}, a {identity.archetype or 'wanderer'}.")
    if identity.persona.traits:
        lines.append(f"Persona traits: {', '.join(identity.persona.traits)}.")
    if identity.persona.goals:
        lines.append(f"Primary goals: {'; '.join(identity.persona.goals)}.")
    if identity.chat.guardrails:
        lines.append(f"Guardrails: {' | '.join(identity.chat.guardrails)}.")
    return "\n".join(lines)


def build_context_section(results: Sequence[SearchResult]) -> str:
    """Format retrieved memories for inclusion in a prompt."""
    if not results:
        return "No cached memories were retrieved."

    sections: list[str] = []
    for index, result in enumerate(results, start=1):
        label = result.document.metadata.get("label")
        if not isinstance(label, str) or not label:
            label = f"Memory {index}"
        sections.append(
            "\n".join(
                [
                    label,
                    f"Similarity: {result.similarity:.3f}",
                    f"Content: {result.document.content}",
                ]
            )
        )
    return "\n\n".join(sections)


def build_chat_prompt(message: str, results: Sequence[SearchResult]) -> str:
    """User prompt grounding *message* in retrieved long-term memory."""
    return "\n".join(
        [
            "Respond in character, grounding your answer in the memories below.",
            "Player message:",
            message,
            "",
            "Long-term memory:",
            build_context_section(results),
        ]
    )
