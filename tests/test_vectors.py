"""Tests for vector helpers and the embedding provider."""

import numpy as np
import pytest

from autopilot_memory import vectors
from autopilot_memory.config import Settings
from autopilot_memory.memory import MemoryEngine
from autopilot_memory.models import DimensionMismatchError
from autopilot_memory.vectors import EmbeddingProvider, cosine_similarity

from conftest import HashingEmbedder


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1.0, 0.0, 0.0], [1.0, 0.0])

    def test_dimension_mismatch_is_value_error(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 0.0])


class TestEmbeddingProvider:
    """The provider runs the encoder off the event loop."""

    async def test_embed_single(self):
        embedder = HashingEmbedder()
        vector = await embedder.embed("use tabs")
        assert len(vector) == 256
        assert vector == embedder.vector("use tabs")

    async def test_embed_batch_single_call(self):
        embedder = HashingEmbedder()
        vectors = await embedder.embed_batch(["one", "two", "three"])
        assert len(vectors) == 3
        assert embedder.calls == 1

    async def test_embed_batch_empty_skips_model(self):
        embedder = HashingEmbedder()
        assert await embedder.embed_batch([]) == []
        assert embedder.calls == 0

    async def test_similar_texts_score_higher(self):
        embedder = HashingEmbedder()
        base, near, far = await embedder.embed_batch([
            "always use type hints in python code",
            "always use type hints",
            "never deploy on friday",
        ])
        assert cosine_similarity(base, near) > cosine_similarity(base, far)


class FakeSentenceTransformer:
    """Records which model names were loaded."""
    loaded: list = []

    def __init__(self, name):
        self.name = name
        FakeSentenceTransformer.loaded.append(name)

    def encode(self, texts, convert_to_numpy=True, normalize_embeddings=True):
        return np.ones((len(texts), 3)) / np.sqrt(3)


class TestModelSelection:
    """The configured model name reaches the model loader."""

    @pytest.fixture(autouse=True)
    def fake_models(self, monkeypatch):
        FakeSentenceTransformer.loaded = []
        monkeypatch.setattr(vectors, "SentenceTransformer", FakeSentenceTransformer)
        monkeypatch.setattr(vectors, "_models", {})

    async def test_engine_uses_configured_model(self, user_root, project_dir):
        config = Settings(user_root=str(user_root), project_dir=str(project_dir), embedding_model="custom-model")
        engine = MemoryEngine(config)
        try:
            assert engine.embedder.model_name == "custom-model"
            vector = await engine.embedder.embed("hello")
        finally:
            await engine.close()

        assert len(vector) == 3
        assert FakeSentenceTransformer.loaded == ["custom-model"]

    async def test_models_are_cached_per_name(self):
        first = EmbeddingProvider("model-a")
        second = EmbeddingProvider("model-b")
        await first.embed_batch(["x", "y"])
        await first.embed("z")
        await second.embed("x")
        assert FakeSentenceTransformer.loaded == ["model-a", "model-b"]

    def test_default_model_from_settings(self):
        assert EmbeddingProvider().model_name == vectors.settings.embedding_model
