"""Sentence embedding engine with lazy, single-flight model loading."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from collections.abc import Sequence
from typing import Any
from typing import Protocol
from typing import runtime_checkable

import numpy as np

from memledger.config import EmbeddingConfig
from memledger.errors import DimensionMismatchError
from memledger.errors import ModelLoadError
from memledger.observability import track_latency

logger = logging.getLogger(__name__)

EmbeddingVector = list[float]


@runtime_checkable
class SentenceEncoder(Protocol):
    """The subset of ``SentenceTransformer`` the engine relies on."""

    def encode(self, sentences: Any, **kwargs: Any) -> Any: ...


def _load_sentence_transformer(model_name: str) -> SentenceEncoder:
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name)


class EmbeddingEngine:
    """Turns text into normalized vectors.

    The model is loaded once, in a worker thread. Concurrent callers of
    ``initialize()`` await the same in-flight load task.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        model_loader: Callable[[str], SentenceEncoder] | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        self._model_loader = model_loader or _load_sentence_transformer
        self._model: SentenceEncoder | None = None
        self._loading: asyncio.Task[SentenceEncoder] | None = None

    @property
    def model_name(self) -> str:
        return self._config.model_name

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    async def initialize(self) -> None:
        """Load the embedding model if it is not loaded yet."""
        if self._model is not None:
            return
        if self._loading is None:
            self._loading = asyncio.create_task(self._load())
        loading = self._loading
        try:
            model = await asyncio.shield(loading)
        except ModelLoadError:
            # Let a later call retry from scratch.
            if self._loading is loading:
                self._loading = None
            raise
        self._model = model

    async def _load(self) -> SentenceEncoder:
        logger.info("Loading embedding model %s", self._config.model_name)
        try:
            with track_latency("embedding.load"):
                return await asyncio.to_thread(
                    self._model_loader, self._config.model_name
                )
        except Exception as exc:
            raise ModelLoadError(
                f"failed to load embedding model {self._config.model_name}: {exc}"
            ) from exc

    async def embed(self, text: str) -> EmbeddingVector:
        """Return the embedding of *text*."""
        await self.initialize()
        model = self._model
        if model is None:
            raise ModelLoadError("embedding model failed to load")

        truncated = text[: self._config.max_content_chars]
        with track_latency("embedding.embed"):
            raw = await asyncio.to_thread(
                model.encode, truncated, normalize_embeddings=True
            )
        vector = np.asarray(raw, dtype=np.float32).reshape(-1)
        return [float(value) for value in vector]

    @staticmethod
    def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
        """Cosine similarity of two vectors; 0.0 when either has no magnitude."""
        if len(vec_a) != len(vec_b):
            raise DimensionMismatchError(
                f"embedding vectors must have the same length "
                f"({len(vec_a)} != {len(vec_b)})"
            )
        a = np.asarray(vec_a, dtype=np.float64)
        b = np.asarray(vec_b, dtype=np.float64)
        denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
        if denominator == 0.0:
            return 0.0
        return float(np.dot(a, b) / denominator)
