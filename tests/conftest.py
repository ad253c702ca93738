# tests/conftest.py
"""
Pytest configuration for autopilot-memory tests.
"""

import hashlib
import math
import re

import pytest

from autopilot_memory.config import Settings
from autopilot_memory.memory import MemoryEngine
from autopilot_memory.vectors import EmbeddingProvider

# Register pytest-asyncio plugin
pytest_plugins = ('pytest_asyncio',)

EMBEDDING_DIM = 256


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test."
    )


class HashingEmbedder(EmbeddingProvider):
    """
    Deterministic bag-of-words embedder.

    Each word is hashed into one of EMBEDDING_DIM buckets and the result is
    normalized, so cosine similarity tracks word overlap. Counts calls so
    tests can assert how often the model was hit.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM):
        super().__init__(model_name="hashing")
        self.dimension = dimension
        self.calls = 0

    def vector(self, text: str):
        vec = [0.0] * self.dimension
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0:
            vec[0] = 1.0
            return vec
        return [v / norm for v in vec]

    def _encode(self, texts):
        self.calls += 1
        return [self.vector(t) for t in texts]


@pytest.fixture
def user_root(tmp_path):
    path = tmp_path / "home" / ".claude"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project_a"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(user_root, project_dir):
    return Settings(user_root=str(user_root), project_dir=str(project_dir))


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
async def engine(test_settings, embedder):
    """A memory engine over temporary user and project roots."""
    eng = MemoryEngine(test_settings, embedder=embedder)
    yield eng
    await eng.close()
