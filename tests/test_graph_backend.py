"""GraphBackend against in-memory stand-ins for the Gremlin and OpenSearch clients."""

import numpy as np
import pytest

from helpers import DIM, unit
from semantic_memory.backends.base import DimensionMismatchError, ReferentialIntegrityError
from semantic_memory.backends.graph_backend import GraphBackend, _cosine_similarity_batch
from semantic_memory.models.core import Scope
from semantic_memory.utils.config import ConfigurationError


class FakeGraph:
    def __init__(self, embedding_dim=None):
        self.embedding_dim = embedding_dim
        self.next_id = 1
        self.entities = {}
        self.facts = {}
        self.closed = False

    def get_embedding_dim(self):
        return self.embedding_dim

    def create_meta(self, dimension):
        self.embedding_dim = dimension

    def allocate_id(self):
        uid = self.next_id
        self.next_id += 1
        return uid

    def find_entity_id(self, name):
        return next((uid for uid, n in self.entities.items() if n == name), None)

    def entity_exists(self, uid):
        return uid in self.entities

    def create_entity_vertex(self, uid, name, created_at=None):
        self.entities[uid] = name

    def create_fact_vertex(self, uid, subject_uid, predicate, object_uid, content, context, source,
                           scope_candidate=None, created_at=None):
        self.facts[uid] = dict(uid=uid, subject_uid=subject_uid, predicate=predicate, object_uid=object_uid,
                               content=content, context=context, source=source,
                               scope_candidate=scope_candidate or '', created_at=str(uid))

    def set_fact_scope(self, uid, scope_candidate):
        self.facts[uid]['scope_candidate'] = scope_candidate or ''

    def _project(self, fact):
        return dict(fact, subject=self.entities[fact['subject_uid']], object=self.entities[fact['object_uid']])

    def find_entities_containing(self, needle):
        return [{'uid': uid, 'name': name} for uid, name in self.entities.items() if needle.lower() in name.lower()]

    def get_facts_touching(self, uids):
        return [self._project(f) for f in self.facts.values() if f['subject_uid'] in uids or f['object_uid'] in uids]

    def get_facts_by_uid(self, uids):
        return [self._project(self.facts[uid]) for uid in uids if uid in self.facts]

    def get_candidate_facts(self, scope):
        return [self._project(f) for f in self.facts.values() if f['scope_candidate'] == scope]

    def list_entities(self, pattern=None):
        return [{'name': name, 'fact_count': sum(1 for f in self.facts.values() if f['subject_uid'] == uid)}
                for uid, name in self.entities.items() if not pattern or pattern.lower() in name.lower()]

    def health_check(self):
        return True

    def close(self):
        self.closed = True


class UnorderedGraph(FakeGraph):
    """Returns fuzzy matches newest first, as a graph server is free to."""

    def find_entities_containing(self, needle):
        return list(reversed(super().find_entities_containing(needle)))


class FakeIndex:
    def __init__(self):
        self.indexes = set()
        self.docs = {}
        self.closed = False

    def create_index_if_not_exists(self, index_type):
        self.indexes.add(index_type)
        return index_type

    def index_document(self, index_type, uid, document):
        self.docs.setdefault(index_type, {})[uid] = document

    def vector_search(self, index_type, query_vector, top_k):
        # Engine-style score (not raw cosine) so the backend has to re-score
        hits = [{'uid': uid, 'score': 1.0 + float(np.dot(doc['embedding'], query_vector)), 'document': doc}
                for uid, doc in self.docs.get(index_type, {}).items()]
        return sorted(hits, key=lambda h: h['score'], reverse=True)[:top_k]

    def health_check(self):
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def index():
    return FakeIndex()


@pytest.fixture
def backend(app_config, graph, index):
    return GraphBackend(app_config, layer='project', graph=graph, index=index)


async def _fact(backend, subject, predicate, obj, embedding, scope=None):
    subject_id = await backend.find_or_create_entity(subject, unit(0))
    object_id = await backend.find_or_create_entity(obj, unit(1))
    return await backend.store_fact(subject_id, predicate, object_id, f'{subject} {predicate} {obj}', 'ctx', '',
                                    embedding, scope_candidate=scope)


class TestSetup:
    def test_locks_dimension_on_fresh_layer(self, backend, graph, index):
        assert graph.embedding_dim == DIM
        assert index.indexes == {'entity', 'fact'}

    def test_dimension_mismatch_closes_graph(self, app_config, index):
        graph = FakeGraph(embedding_dim=384)

        with pytest.raises(ConfigurationError, match='dim=384'):
            GraphBackend(app_config, graph=graph, index=index)
        assert graph.closed


class TestWrites:
    @pytest.mark.asyncio
    async def test_entity_ids_are_stable(self, backend, index):
        first = await backend.find_or_create_entity('api', unit(0))
        second = await backend.find_or_create_entity('api', unit(3))

        assert first == second
        assert index.docs['entity'][first]['embedding'] == unit(3)

    @pytest.mark.asyncio
    async def test_referential_integrity(self, backend):
        subject_id = await backend.find_or_create_entity('api', unit(0))

        with pytest.raises(ReferentialIntegrityError):
            await backend.store_fact(subject_id, 'uses', 42, 'api uses ghost', '', '', unit(1))

    @pytest.mark.asyncio
    async def test_dimension_checked_before_write(self, backend, graph):
        with pytest.raises(DimensionMismatchError):
            await backend.find_or_create_entity('api', [1.0])
        assert graph.entities == {}

    @pytest.mark.asyncio
    async def test_facts_are_appended(self, backend):
        first = await _fact(backend, 'api', 'uses', 'postgres', unit(0))
        second = await _fact(backend, 'api', 'uses', 'postgres', unit(0))

        assert first != second
        assert [(e.name, e.fact_count) for e in await backend.list_entities()] == [('api', 2), ('postgres', 0)]


class TestSearch:
    @pytest.mark.asyncio
    async def test_scores_are_cosine(self, backend):
        await _fact(backend, 'api', 'uses', 'postgres', unit(0))
        await _fact(backend, 'api', 'runs_on', 'k8s', [1.0, 1.0, 0.0, 0.0])

        results = await backend.search_facts(unit(0), 5)

        assert [r.triple for r in results] == [('api', 'uses', 'postgres'), ('api', 'runs_on', 'k8s')]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(1 / np.sqrt(2))

    @pytest.mark.asyncio
    async def test_empty(self, backend):
        assert await backend.search_facts(unit(0), 5) == []


class TestGraphTraverse:
    @pytest.mark.asyncio
    async def test_depth_and_direction(self, backend):
        await _fact(backend, 'alpha', 'calls', 'beta', unit(0))
        await _fact(backend, 'beta', 'calls', 'gamma', unit(1))
        await _fact(backend, 'gamma', 'calls', 'delta', unit(2))

        one = await backend.graph_traverse('alpha', 1)
        two = await backend.graph_traverse('alpha', 2)
        back = await backend.graph_traverse('delta', 1)

        assert one.entities == ['beta']
        assert two.entities == ['beta', 'gamma']
        assert back.entities == ['gamma']
        assert [f.triple for f in back.facts] == [('gamma', 'calls', 'delta'), ('beta', 'calls', 'gamma')]

    @pytest.mark.asyncio
    async def test_shortest_match_wins(self, backend):
        await backend.find_or_create_entity('billing-service', unit(0))
        await backend.find_or_create_entity('billing', unit(1))

        result = await backend.graph_traverse('Bill', 1)

        assert result.matched_name == 'billing'
        assert result.entities == []
        assert result.facts == []

    @pytest.mark.asyncio
    async def test_equal_length_matches_prefer_oldest_entity(self, app_config, index):
        graph = UnorderedGraph()
        backend = GraphBackend(app_config, graph=graph, index=index)
        await backend.find_or_create_entity('billz', unit(0))
        await backend.find_or_create_entity('billa', unit(1))

        result = await backend.graph_traverse('bill', 1)

        assert result.matched_name == 'billz'

    @pytest.mark.asyncio
    async def test_not_found(self, backend):
        assert await backend.graph_traverse('ghost', 2) is None


@pytest.mark.asyncio
async def test_candidates_and_scope_update(backend):
    tagged = await _fact(backend, 'api', 'uses', 'postgres', unit(0), scope=Scope.GLOBAL)
    await _fact(backend, 'api', 'todo', 'retries', unit(1), scope=Scope.PROJECT)

    candidates = await backend.get_candidate_facts(Scope.GLOBAL)
    assert [c.fact_id for c in candidates] == [tagged]
    assert candidates[0].scope_candidate is Scope.GLOBAL

    await backend.update_fact_scope(tagged, None)
    assert await backend.get_candidate_facts(Scope.GLOBAL) == []


@pytest.mark.asyncio
async def test_close_closes_both_clients(backend, graph, index):
    assert await backend.health_check()
    await backend.close()
    assert graph.closed and index.closed


def test_cosine_similarity_batch_handles_zero_vectors():
    matrix = np.array([[1.0, 0.0], [0.0, 0.0]])

    assert _cosine_similarity_batch(np.array([1.0, 0.0]), matrix).tolist() == [1.0, 0.0]
    assert _cosine_similarity_batch(np.zeros(2), matrix).tolist() == [0.0, 0.0]
