"""
Dual-layer coordinator: a project store and a global store answering as one.

Writes land in the project layer with a scope hint. Reads fan out to both
layers concurrently and are merged; a failure in either layer fails the read.
"""

import asyncio
from typing import List, Optional, Sequence

from ..backends.base import LayerCloseError, StorageBackend, supports_candidates
from ..models.core import CandidateFact, EntityInfo, GraphResult, Scope, SearchResult
from ..utils.logging_config import get_logger
from .scope_classifier import classify_scope

logger = get_logger(__name__)

PROJECT = 'project'
GLOBAL = 'global'


class DualMemoryBackend:
    """Merges a ``project`` and a ``global`` StorageBackend behind the same interface."""

    def __init__(self, project: StorageBackend, global_: StorageBackend):
        self.project = project
        self.global_ = global_

    async def find_or_create_entity(self, name: str, embedding: Sequence[float]) -> int:
        return await self.project.find_or_create_entity(name, embedding)

    async def store_fact(self,
                         subject_id: int,
                         predicate: str,
                         object_id: int,
                         content: str,
                         context: str,
                         source: str,
                         embedding: Sequence[float],
                         scope_candidate: Optional[Scope] = None) -> int:
        scope = scope_candidate or classify_scope(predicate)
        return await self.project.store_fact(subject_id, predicate, object_id, content, context, source, embedding,
                                             scope_candidate=scope)

    async def search_facts(self, query_embedding: Sequence[float], limit: int) -> List[SearchResult]:
        project_results, global_results = await asyncio.gather(self.project.search_facts(query_embedding, limit),
                                                               self.global_.search_facts(query_embedding, limit))
        for result in project_results:
            result.source_layer = PROJECT
        for result in global_results:
            result.source_layer = GLOBAL

        # Stable sort: on equal scores the project copy comes first
        ranked = sorted(project_results + global_results, key=lambda r: r.score, reverse=True)

        seen = set()
        merged = []
        for result in ranked:
            if result.triple not in seen:
                seen.add(result.triple)
                merged.append(result)
        return merged[:limit]

    async def graph_traverse(self, entity_query: str, depth: int) -> Optional[GraphResult]:
        project_result, global_result = await asyncio.gather(self.project.graph_traverse(entity_query, depth),
                                                             self.global_.graph_traverse(entity_query, depth))
        if project_result is None:
            return global_result
        if global_result is None:
            return project_result

        entities = list(dict.fromkeys(project_result.entities + global_result.entities))

        facts = {}
        for fact in project_result.facts + global_result.facts:
            facts.setdefault(fact.triple, fact)

        return GraphResult(matched_name=project_result.matched_name, entities=entities, facts=list(facts.values()))

    async def list_entities(self, pattern: Optional[str] = None) -> List[EntityInfo]:
        project_entities, global_entities = await asyncio.gather(self.project.list_entities(pattern),
                                                                 self.global_.list_entities(pattern))
        counts = {}
        for entity in project_entities + global_entities:
            counts[entity.name] = counts.get(entity.name, 0) + entity.fact_count

        return [EntityInfo(name=name, fact_count=count) for name, count in sorted(counts.items())]

    async def get_candidate_facts(self, scope: Scope) -> List[CandidateFact]:
        if not supports_candidates(self.project):
            logger.warning('Project layer does not support candidate facts')
            return []
        return await self.project.get_candidate_facts(scope)

    async def update_fact_scope(self, fact_id: int, scope: Optional[Scope]) -> None:
        if not supports_candidates(self.project):
            logger.warning(f'Project layer does not support candidate facts; scope of fact {fact_id} unchanged')
            return
        await self.project.update_fact_scope(fact_id, scope)

    async def health_check(self) -> bool:
        project_ok, global_ok = await asyncio.gather(self.project.health_check(), self.global_.health_check())
        return project_ok and global_ok

    async def close(self) -> None:
        """Close both layers, raising LayerCloseError with every failure."""
        results = await asyncio.gather(self.project.close(), self.global_.close(), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for error in errors:
                logger.error(f'Error closing layer: {error}')
            raise LayerCloseError(errors)
