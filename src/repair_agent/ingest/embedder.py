"""Embedding abstractions and a deterministic offline implementation."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

_WORD_PATTERN = re.compile(r"[a-z0-9]+(?:[.\-][a-z0-9]+)*")


class Embedder(ABC):
    """Embedding function shared by section indexing and query time.

    Query vectors are only comparable with section vectors produced by the
    same embedder instance configuration.
    """

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many section texts."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Feature-hashing embedder over lowercase word tokens.

    Used for local runs and tests where no embedding model is configured.
    Texts sharing vocabulary point in similar directions, which is enough for
    exercising the retrieval path deterministically.
    """

    def __init__(self, dimension: int = 1024) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _WORD_PATTERN.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            vector[idx] += 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
