import pytest
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError

from semantic_memory.utils import opensearch_client
from semantic_memory.utils.config import OpenSearchConfig
from semantic_memory.utils.opensearch_client import ENTITY_INDEX, FACT_INDEX, OpenSearchClient, OpenSearchError


class FakeIndices:
    def __init__(self):
        self.existing = set()
        self.created = {}

    def exists(self, index):
        return index in self.existing

    def create(self, index, body):
        self.existing.add(index)
        self.created[index] = body


class FakeOpenSearch:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.indices = FakeIndices()
        self.indexed = []
        self.searches = []
        self.fail = False

    def index(self, index, id, body, refresh):
        if self.fail:
            raise OpenSearchConnectionError('N/A', 'refused', None)
        self.indexed.append((index, id, body, refresh))
        return {'result': 'created'}

    def search(self, index, body):
        self.searches.append((index, body))
        return {'hits': {'hits': [{'_score': 0.9, '_source': {'uid': 7, 'layer': 'global', 'embedding': [1.0, 0.0]}}]}}

    def close(self):
        pass


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(opensearch_client, 'OpenSearch', FakeOpenSearch)
    config = OpenSearchConfig(endpoint='https://search.example.com', port=443, region='us-east-1',
                              index_name='memory', service='es', use_ssl=True, aws_auth=False)
    return OpenSearchClient(config, 'global', dimension=2)


def test_host_strips_scheme(client):
    assert client.client.kwargs['hosts'] == [{'host': 'search.example.com', 'port': 443}]


def test_creates_index_once(client):
    assert client.create_index_if_not_exists(FACT_INDEX) == 'created'
    assert client.create_index_if_not_exists(FACT_INDEX) == 'exists'

    body = client.client.indices.created['memory_global_fact']
    assert body['mappings']['properties']['embedding']['dimension'] == 2
    assert body['mappings']['properties']['embedding']['method']['space_type'] == 'cosinesimil'


def test_documents_keyed_by_layer(client):
    client.index_document(ENTITY_INDEX, 3, {'name': 'api', 'embedding': [0.0, 1.0]})

    index, doc_id, body, refresh = client.client.indexed[0]
    assert (index, doc_id, refresh) == ('memory_global_entity', 'global:3', True)
    assert body == {'name': 'api', 'embedding': [0.0, 1.0], 'uid': 3, 'layer': 'global'}


def test_search_filters_on_layer(client):
    hits = client.vector_search(FACT_INDEX, [1.0, 0.0], 4)

    index, body = client.client.searches[0]
    assert index == 'memory_global_fact'
    assert body['query']['bool']['filter'] == [{'term': {'layer': 'global'}}]
    assert body['query']['bool']['must'][0]['knn']['embedding']['k'] == 4
    assert hits == [{'uid': 7, 'score': 0.9, 'document': {'uid': 7, 'layer': 'global', 'embedding': [1.0, 0.0]}}]


def test_index_failure_wrapped(client):
    client.client.fail = True

    with pytest.raises(OpenSearchError):
        client.index_document(FACT_INDEX, 1, {'embedding': [1.0, 0.0]})


class SharedCluster(FakeOpenSearch):
    """One document pool per index name; k-NN ranks the whole index before the layer filter applies."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.docs = {}

    def index(self, index, id, body, refresh):
        self.docs.setdefault(index, {})[id] = body
        return {'result': 'created'}

    def search(self, index, body):
        knn = body['query']['bool']['must'][0]['knn']['embedding']
        layer = body['query']['bool']['filter'][0]['term']['layer']
        ranked = sorted(self.docs.get(index, {}).values(),
                        key=lambda doc: -sum(a * b for a, b in zip(doc['embedding'], knn['vector'])))
        nearest = ranked[:knn['k']]
        return {'hits': {'hits': [{'_score': 1.0, '_source': doc} for doc in nearest if doc['layer'] == layer]}}


def test_layers_sharing_a_cluster_do_not_crowd_each_other_out(monkeypatch):
    cluster = SharedCluster()
    monkeypatch.setattr(opensearch_client, 'OpenSearch', lambda **kwargs: cluster)
    config = OpenSearchConfig(endpoint='localhost', port=9200, region='us-east-1', index_name='memory', service='es',
                              use_ssl=False, aws_auth=False)
    project = OpenSearchClient(config, 'project', dimension=2)
    global_ = OpenSearchClient(config, 'global', dimension=2)

    for uid in range(1, 11):
        global_.index_document(FACT_INDEX, uid, {'embedding': [1.0, 0.01 * uid]})
    for uid in range(1, 6):
        project.index_document(FACT_INDEX, uid, {'embedding': [0.1 * uid, 1.0]})

    hits = project.vector_search(FACT_INDEX, [1.0, 0.0], 5)

    assert sorted(h['uid'] for h in hits) == [1, 2, 3, 4, 5]
    assert {h['document']['layer'] for h in hits} == {'project'}
    assert project.index_name(FACT_INDEX) != global_.index_name(FACT_INDEX)
