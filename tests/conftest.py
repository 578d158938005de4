"""
Shared fixtures: a deterministic offline embedder and an on-disk store.
"""

from __future__ import annotations

import hashlib
import re

import pytest


class FakeEmbedder:
    """
    Bag-of-words embedder: one hashed bucket per lowercase word, plus a
    constant bias component so that no text maps to the zero vector.
    """

    def __init__(self, dims: int = 256, fail_on: tuple[str, ...] = ()) -> None:
        self.dims = dims
        self.fail_on = fail_on
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        from codebase_context.errors import EmbeddingUnavailable

        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingUnavailable("provider refused this text")
        vec = [0.0] * self.dims
        vec[0] = 1.0
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = 1 + int(hashlib.md5(word.encode()).hexdigest(), 16) % (self.dims - 1)
            vec[bucket] += 1.0
        return vec


class FixedEmbedder:
    """Returns a preset vector for each exact text (and a default otherwise)."""

    def __init__(self, vectors: dict[str, list[float]], default: list[float]) -> None:
        self.vectors = vectors
        self.default = default
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))


@pytest.fixture()
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture()
def store(tmp_path):
    from codebase_context.store import ContextStore

    s = ContextStore(str(tmp_path / "codebase.db"))
    yield s
    s.close()


@pytest.fixture()
def config():
    from codebase_context.config import Config

    cfg = Config()
    cfg.MAX_WORKERS = 2
    return cfg


@pytest.fixture()
def make_embedder():
    """Factory for :class:`FakeEmbedder` with custom options."""
    return FakeEmbedder


@pytest.fixture()
def make_fixed_embedder():
    """Factory for :class:`FixedEmbedder`."""
    return FixedEmbedder
