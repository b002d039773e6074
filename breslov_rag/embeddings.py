"""Embedding providers.

Embeddings are an optional signal: every caller must cope with a provider
that is absent, slow or failing, in which case scoring falls back to the
lexical and thematic signals.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Protocol

import numpy as np

from breslov_rag.config import EmbeddingConfig

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-dimension vector."""

    def embed(self, text: str) -> list[float]: ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers model (multilingual E5 by default).

    Args:
        config: EmbeddingConfig with model name, device and batch size.
    """

    def __init__(self, config: EmbeddingConfig) -> None:
        from sentence_transformers import SentenceTransformer

        device = None if config.device == "auto" else config.device
        logger.info("Loading embedding model: %s", config.model)
        self._model = SentenceTransformer(config.model, device=device)
        self._batch_size = config.batch_size

    def embed(self, text: str) -> list[float]:
        vector = self._model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return vector.tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts,
            batch_size=self._batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return vectors.tolist()


class TimeoutEmbedder:
    """Runs another provider with a time limit and swallows its failures.

    ``embed`` returns ``None`` when the wrapped provider raises or does not
    answer within ``timeout`` seconds.

    Args:
        provider: The provider to wrap.
        timeout: Seconds to wait for one embedding.
        executor: Pool that runs the calls; a private one is created if omitted.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        timeout: float,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="embedder"
        )

    def embed(self, text: str) -> list[float] | None:
        try:
            future = self._executor.submit(self._provider.embed, text)
            return list(future.result(timeout=self._timeout))
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Embedding timed out after %.1fs", self._timeout)
        except Exception:
            logger.warning("Embedding provider failed", exc_info=True)
        return None

    def close(self) -> None:
        """Stop the private pool; calls still running are abandoned."""
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0 for mismatched or zero vectors."""
    if len(a) != len(b) or not a:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def build_embedder(config: EmbeddingConfig) -> EmbeddingProvider | None:
    """Create the configured provider, or None when embeddings are disabled."""
    if not config.enabled:
        return None
    return SentenceTransformerEmbedder(config)
