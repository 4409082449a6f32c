"""
Storage capability set shared by every physical backend and by the dual-layer coordinator.

Backends are selected by configuration (see ``backends.factory``); callers only
ever depend on these protocols.
"""

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from ..models.core import CandidateFact, EntityInfo, GraphResult, Scope, SearchResult


class StorageError(Exception):
    """Base class for storage-layer errors."""
    pass


class ReferentialIntegrityError(StorageError):
    """A fact referenced an entity id that does not exist in the store."""
    pass


class DimensionMismatchError(StorageError):
    """An embedding does not have the store's locked dimension."""
    pass


class LayerCloseError(StorageError):
    """One or more layers failed to close."""

    def __init__(self, errors: Sequence[BaseException]):
        self.errors = list(errors)
        details = '; '.join(f'{type(e).__name__}: {e}' for e in self.errors)
        super().__init__(f'Failed to close {len(self.errors)} layer(s): {details}')


def check_dimension(embedding: Sequence[float], dimension: int, what: str) -> None:
    """Raise DimensionMismatchError unless ``embedding`` has ``dimension`` values."""
    if len(embedding) != dimension:
        raise DimensionMismatchError(f'{what} embedding has dim={len(embedding)}, store requires dim={dimension}')


def dimension_mismatch_message(stored: int, configured: int) -> str:
    return (f'Embedding dimension mismatch: store was created with dim={stored}, '
            f'but current config has dim={configured}. '
            f'Either set EMBEDDING_DIM={stored} or start with a fresh store.')


class StorageBackend(Protocol):
    """Entity/fact store for one logical layer."""

    async def find_or_create_entity(self, name: str, embedding: Sequence[float]) -> int:
        ...

    async def store_fact(self,
                         subject_id: int,
                         predicate: str,
                         object_id: int,
                         content: str,
                         context: str,
                         source: str,
                         embedding: Sequence[float],
                         scope_candidate: Optional[Scope] = None) -> int:
        ...

    async def search_facts(self, query_embedding: Sequence[float], limit: int) -> List[SearchResult]:
        ...

    async def graph_traverse(self, entity_query: str, depth: int) -> Optional[GraphResult]:
        ...

    async def list_entities(self, pattern: Optional[str] = None) -> List[EntityInfo]:
        ...

    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class CandidateStore(Protocol):
    """Optional capability: reading and clearing scope candidate tags."""

    async def get_candidate_facts(self, scope: Scope) -> List[CandidateFact]:
        ...

    async def update_fact_scope(self, fact_id: int, scope: Optional[Scope]) -> None:
        ...


def supports_candidates(backend: object) -> bool:
    return isinstance(backend, CandidateStore)
