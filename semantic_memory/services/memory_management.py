"""
Memory service: the store/search/graph/list operations behind the MCP tools.
"""

import asyncio
from typing import List, Optional

from ..backends.base import StorageBackend
from ..models.core import EntityInfo, GraphResult, SearchResult, StoredFact
from ..utils.embeddings import Embedder
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SEARCH_LIMIT = 5
MAX_SEARCH_LIMIT = 50
DEFAULT_GRAPH_DEPTH = 2
MAX_GRAPH_DEPTH = 5


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class MemoryService:
    """Embeds text and runs tool operations against one backend (single layer or dual)."""

    def __init__(self, backend: StorageBackend, embedder: Embedder):
        self.backend = backend
        self.embedder = embedder

    async def store(self,
                    subject: str,
                    predicate: str,
                    object: str,
                    fact: str,
                    context: str,
                    source: Optional[str] = None) -> StoredFact:
        """Store a fact, creating (or re-embedding) its subject and object entities.

        Args:
            subject: Subject entity name
            predicate: Relationship verb
            object: Object entity name
            fact: Full fact description
            context: Source context or snippet
            source: Source file path or URL

        Returns:
            StoredFact echoing the triple
        """
        subject_emb, object_emb, fact_emb = await asyncio.gather(asyncio.to_thread(self.embedder.embed_document, subject),
                                                                 asyncio.to_thread(self.embedder.embed_document, object),
                                                                 asyncio.to_thread(self.embedder.embed_document, fact))

        subject_id = await self.backend.find_or_create_entity(subject, subject_emb)
        object_id = await self.backend.find_or_create_entity(object, object_emb)
        fact_id = await self.backend.store_fact(subject_id, predicate, object_id, fact, context, source or '', fact_emb)

        logger.debug(f'Stored fact {fact_id}: [{subject}] -[{predicate}]-> [{object}]')
        return StoredFact(fact_id=fact_id, subject=subject, predicate=predicate, object=object, content=fact)

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[SearchResult]:
        """Semantic search, most similar facts first."""
        limit = _clamp(limit, 1, MAX_SEARCH_LIMIT)
        query_emb = await asyncio.to_thread(self.embedder.embed_query, query)
        results = await self.backend.search_facts(query_emb, limit)
        logger.debug(f'Search returned {len(results)} facts for query: {query}')
        return results

    async def graph(self, entity: str, depth: int = DEFAULT_GRAPH_DEPTH) -> Optional[GraphResult]:
        """Neighbourhood of the entity best matching ``entity``, or None."""
        return await self.backend.graph_traverse(entity, _clamp(depth, 1, MAX_GRAPH_DEPTH))

    async def list_entities(self, pattern: Optional[str] = None) -> List[EntityInfo]:
        return await self.backend.list_entities(pattern or None)
