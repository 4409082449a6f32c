"""
Graph-native backend: Gremlin vertices and edges for entities and facts, an
OpenSearch k-NN index for their embeddings.
"""

import asyncio
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from ..models.core import CandidateFact, EntityInfo, GraphFact, GraphResult, Scope, SearchResult
from ..utils.config import AppConfig, ConfigurationError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import ENTITY_INDEX, FACT_INDEX
from .base import ReferentialIntegrityError, check_dimension, dimension_mismatch_message

logger = get_logger(__name__)


def _cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between ``query`` (1-D) and each row of ``matrix``."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = 1.0
    return (matrix @ query) / (row_norms * query_norm)


def _graph_fact(row: Dict[str, Any]) -> GraphFact:
    return GraphFact(subject=row['subject'], predicate=row['predicate'], object=row['object'], content=row['content'])


def _newest_first(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda r: (int(r.get('created_at') or 0), int(r['uid'])), reverse=True)


class GraphBackend:
    """Entity/fact store on a Gremlin graph plus an OpenSearch vector index.

    ``graph`` and ``index`` default to a ``NeptuneClient`` and an
    ``OpenSearchClient`` built from ``config``; any objects with the same
    methods can be supplied instead.
    """

    def __init__(self, config: AppConfig, layer: str = 'project', graph=None, index=None) -> None:
        self.layer = layer
        self.dimension = config.embedding.dimension
        self._lock = threading.Lock()

        if graph is None:
            from ..utils.neptune_client import NeptuneClient
            graph = NeptuneClient(config.neptune, layer)
        self.graph = graph

        try:
            self._lock_dimension()
            if index is None:
                from ..utils.opensearch_client import OpenSearchClient
                index = OpenSearchClient(config.opensearch, layer, self.dimension)
            self.index = index
            self.index.create_index_if_not_exists(ENTITY_INDEX)
            self.index.create_index_if_not_exists(FACT_INDEX)
        except BaseException:
            self.graph.close()
            raise

        logger.info(f'Opened graph {layer} store (dim={self.dimension})')

    def _lock_dimension(self) -> None:
        stored = self.graph.get_embedding_dim()
        if stored is None:
            self.graph.create_meta(self.dimension)
        elif stored != self.dimension:
            raise ConfigurationError(dimension_mismatch_message(stored, self.dimension))

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return fn(*args)

    async def close(self) -> None:
        await self._run(self._close)

    def _close(self) -> None:
        try:
            self.graph.close()
        finally:
            self.index.close()

    async def health_check(self) -> bool:
        return await self._run(lambda: bool(self.graph.health_check() and self.index.health_check()))

    # ── Writes ────────────────────────────────────────────────

    async def find_or_create_entity(self, name: str, embedding: Sequence[float]) -> int:
        check_dimension(embedding, self.dimension, f"Entity '{name}'")
        return await self._run(self._find_or_create_entity, name, [float(v) for v in embedding])

    def _find_or_create_entity(self, name: str, embedding: List[float]) -> int:
        uid = self.graph.find_entity_id(name)
        if uid is None:
            uid = self.graph.allocate_id()
            self.graph.create_entity_vertex(uid, name)
        self.index.index_document(ENTITY_INDEX, uid, {'name': name, 'embedding': embedding})
        return uid

    async def store_fact(self,
                         subject_id: int,
                         predicate: str,
                         object_id: int,
                         content: str,
                         context: str,
                         source: str,
                         embedding: Sequence[float],
                         scope_candidate: Optional[Scope] = None) -> int:
        check_dimension(embedding, self.dimension, 'Fact')
        scope = Scope(scope_candidate).value if scope_candidate else None
        return await self._run(self._store_fact, subject_id, predicate, object_id, content, context, source or '',
                               [float(v) for v in embedding], scope)

    def _store_fact(self, subject_id: int, predicate: str, object_id: int, content: str, context: str, source: str,
                    embedding: List[float], scope: Optional[str]) -> int:
        missing = [uid for uid in (subject_id, object_id) if not self.graph.entity_exists(uid)]
        if missing:
            raise ReferentialIntegrityError(f'Fact references unknown entity id(s) {missing} in layer {self.layer}')

        uid = self.graph.allocate_id()
        self.graph.create_fact_vertex(uid, subject_id, predicate, object_id, content, context, source, scope)
        self.index.index_document(FACT_INDEX, uid, {'predicate': predicate, 'content': content, 'embedding': embedding})
        return uid

    async def update_fact_scope(self, fact_id: int, scope: Optional[Scope]) -> None:
        value = Scope(scope).value if scope else None
        await self._run(self.graph.set_fact_scope, fact_id, value)

    # ── Reads ─────────────────────────────────────────────────

    async def search_facts(self, query_embedding: Sequence[float], limit: int) -> List[SearchResult]:
        check_dimension(query_embedding, self.dimension, 'Query')
        return await self._run(self._search_facts, [float(v) for v in query_embedding], limit)

    def _search_facts(self, query_embedding: List[float], limit: int) -> List[SearchResult]:
        hits = [h for h in self.index.vector_search(FACT_INDEX, query_embedding, limit) if h['document'].get('embedding')]
        if not hits:
            return []

        # Exact re-scoring: engine scores are not 1 - cosine distance
        matrix = np.array([h['document']['embedding'] for h in hits], dtype=np.float32)
        scores = _cosine_similarity_batch(np.array(query_embedding, dtype=np.float32), matrix)
        score_by_uid = {int(h['uid']): float(s) for h, s in zip(hits, scores)}

        rows = self.graph.get_facts_by_uid(list(score_by_uid))
        results = [
            SearchResult(subject=row['subject'],
                         predicate=row['predicate'],
                         object=row['object'],
                         content=row['content'],
                         context=row['context'],
                         source=row['source'] or '',
                         score=score_by_uid[int(row['uid'])]) for row in rows
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def graph_traverse(self, entity_query: str, depth: int) -> Optional[GraphResult]:
        return await self._run(self._graph_traverse, entity_query, depth)

    def _graph_traverse(self, entity_query: str, depth: int) -> Optional[GraphResult]:
        matches = self.graph.find_entities_containing(entity_query)
        if not matches:
            return None
        start = min(matches, key=lambda m: (len(m['name']), int(m['uid'])))
        start_uid = int(start['uid'])

        names: Dict[int, str] = {}
        visited = {start_uid}
        frontier = [start_uid]
        for _ in range(depth):
            reached = []
            for row in self.graph.get_facts_touching(frontier):
                for uid, name in ((int(row['subject_uid']), row['subject']), (int(row['object_uid']), row['object'])):
                    if uid not in visited:
                        visited.add(uid)
                        names[uid] = name
                        reached.append(uid)
            if not reached:
                break
            frontier = reached

        facts = _newest_first(self.graph.get_facts_touching(sorted(visited)))
        return GraphResult(matched_name=start['name'], entities=sorted(names.values()), facts=[_graph_fact(r) for r in facts])

    async def list_entities(self, pattern: Optional[str] = None) -> List[EntityInfo]:
        rows = await self._run(self.graph.list_entities, pattern)
        return sorted((EntityInfo(name=r['name'], fact_count=int(r['fact_count'])) for r in rows), key=lambda e: e.name)

    async def get_candidate_facts(self, scope: Scope) -> List[CandidateFact]:
        rows = await self._run(self.graph.get_candidate_facts, Scope(scope).value)
        return [
            CandidateFact(fact_id=int(row['uid']),
                          subject=row['subject'],
                          predicate=row['predicate'],
                          object=row['object'],
                          content=row['content'],
                          context=row['context'],
                          source=row['source'] or '',
                          scope_candidate=Scope(row['scope_candidate'])) for row in sorted(rows, key=lambda r: int(r['uid']))
        ]
