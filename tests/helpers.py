"""Test doubles shared across modules: a deterministic embedder and small vectors."""

from __future__ import annotations

import hashlib

DIM = 4


def unit(i: int, dim: int = DIM) -> list[float]:
    vec = [0.0] * dim
    vec[i] = 1.0
    return vec


class FakeEmbedder:
    """Deterministic text -> vector mapping; identical text gives identical vectors."""

    def __init__(self, dimension: int = DIM, fail_on: tuple[str, ...] = ()):
        self.dimension = dimension
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    def embed_document(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise RuntimeError(f"embedding failed for {text!r}")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[:self.dimension]]

    def embed_query(self, text: str) -> list[float]:
        return self.embed_document(text)

    def health_check(self) -> bool:
        return True


async def add_fact(backend, subject: str, predicate: str, obj: str, embedding: list[float], content: str = "",
                   scope=None) -> int:
    """Store a triple, creating both entities with their own unit embeddings."""
    subject_id = await backend.find_or_create_entity(subject, unit(0))
    object_id = await backend.find_or_create_entity(obj, unit(1))
    return await backend.store_fact(subject_id, predicate, object_id, content or f"{subject} {predicate} {obj}",
                                    "ctx", "", embedding, scope_candidate=scope)
