"""
Vector Embeddings - Semantic understanding with sentence-transformers.

This module provides:
- Lazily loaded, process-wide embedding models (one per model name)
- An async EmbeddingProvider used by the memory engine
- Cosine similarity with strict dimension checking
"""

import asyncio
import logging
import threading
from typing import Dict, List, Optional, Sequence

from sentence_transformers import SentenceTransformer
import numpy as np

from .config import settings
from .models import DimensionMismatchError

logger = logging.getLogger(__name__)

# Loaded models by name (lazy, shared across all providers)
_models: Dict[str, SentenceTransformer] = {}
_model_lock = threading.Lock()


def _get_model(model_name: Optional[str] = None) -> SentenceTransformer:
    """Get or create an embedding model (loaded once per process and name)."""
    name = model_name or settings.embedding_model

    with _model_lock:
        model = _models.get(name)
        if model is None:
            logger.info(f"Loading embedding model ({name})...")
            model = SentenceTransformer(name)
            _models[name] = model
            logger.info("Embedding model loaded.")

    return model


def encode_batch(texts: Sequence[str], model_name: Optional[str] = None) -> List[List[float]]:
    """Encode texts to unit-length vectors."""
    if not texts:
        return []
    model = _get_model(model_name)
    embeddings = model.encode(list(texts), convert_to_numpy=True, normalize_embeddings=True)
    return embeddings.tolist()


def encode(text: str, model_name: Optional[str] = None) -> List[float]:
    """Encode a single text to a unit-length vector."""
    return encode_batch([text], model_name)[0]


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Raises DimensionMismatchError if the vectors differ in length.
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    if a.shape != b.shape:
        raise DimensionMismatchError(f"Cannot compare vectors of dimension {a.size} and {b.size}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


class EmbeddingProvider:
    """
    Async facade over an embedding model.

    Encoding is CPU-bound, so it runs in a worker thread. Subclasses can
    override ``_encode`` to plug in a different model.
    """

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or settings.embedding_model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        return encode_batch(texts, self.model_name)

    async def embed(self, text: str) -> List[float]:
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))
