"""
OpenSearch client wrapper: the k-NN vector index of the graph-native backend.

Two indexes per layer, ``<index>_<layer>_entity`` and ``<index>_<layer>_fact``,
so a k-NN search only ever ranks the client's own layer. Documents are keyed
``<layer>:<uid>`` so re-indexing an entity replaces its embedding.
"""

from typing import Any, Dict, List, Sequence

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

ENTITY_INDEX = 'entity'
FACT_INDEX = 'fact'


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def _index_body(index_type: str, dimension: int) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        'uid': {
            'type': 'long'
        },
        'layer': {
            'type': 'keyword'
        },
        'embedding': {
            'type': 'knn_vector',
            'dimension': dimension,
            'method': {
                'name': 'hnsw',
                'space_type': 'cosinesimil',
                'engine': 'nmslib'
            }
        }
    }
    if index_type == ENTITY_INDEX:
        properties['name'] = {'type': 'keyword'}
    else:
        properties.update({
            'subject': {
                'type': 'keyword'
            },
            'predicate': {
                'type': 'keyword'
            },
            'object': {
                'type': 'keyword'
            },
            'content': {
                'type': 'text'
            },
        })
    return {'mappings': {'properties': properties}, 'settings': {'index': {'knn': True, 'knn.algo_param.ef_search': 100}}}


class OpenSearchClient:
    """OpenSearch client with optional AWS SigV4 authentication, scoped to one layer."""

    def __init__(self, config: OpenSearchConfig, layer: str, dimension: int):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            layer: Layer name used to tag and filter documents
            dimension: Vector dimension of newly created indexes
        """
        self.config = config
        self.layer = layer
        self.dimension = dimension

        auth = None
        if config.aws_auth:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)

        endpoint = config.endpoint
        if '://' in endpoint:
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=config.use_ssl,
                                 verify_certs=config.use_ssl,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint} (layer {layer})')

    def index_name(self, index_type: str) -> str:
        return f'{self.config.index_name}_{self.layer}_{index_type}'

    def _doc_id(self, uid: int) -> str:
        return f'{self.layer}:{uid}'

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create the entity or fact index if it doesn't exist.

        Returns:
            'exists' or 'created'
        """
        index_name = self.index_name(index_type)
        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            self.client.indices.create(index=index_name, body=_index_body(index_type, self.dimension))
            logger.info(f'Created index {index_name}')
            return 'created'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}') from e

    def index_document(self, index_type: str, uid: int, document: Dict[str, Any]) -> None:
        """
        Index (or replace) the document of one entity or fact.

        Args:
            index_type: ENTITY_INDEX or FACT_INDEX
            uid: Handle of the entity or fact
            document: Document body, must contain 'embedding'
        """
        index_name = self.index_name(index_type)
        body = dict(document, uid=uid, layer=self.layer)
        try:
            # AOSS vector collections reject explicit refresh
            refresh = self.config.service != 'aoss'
            response = self.client.index(index=index_name, id=self._doc_id(uid), body=body, refresh=refresh)
        except OpenSearchException as e:
            logger.error(f'Error indexing document {uid} in {index_name}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}') from e

        if response.get('result') not in ('created', 'updated'):
            raise OpenSearchError(f'Unexpected result indexing document {uid}: {response}')
        logger.debug(f'Indexed document {uid} in {index_name}')

    def vector_search(self, index_type: str, query_vector: Sequence[float], top_k: int) -> List[Dict[str, Any]]:
        """
        Approximate k-NN search within this layer.

        Returns:
            List of hits ``{'uid', 'score', 'document'}``; documents include their embedding
        """
        index_name = self.index_name(index_type)
        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': list(query_vector),
                                'k': top_k
                            }
                        }
                    }],
                    'filter': [{
                        'term': {
                            'layer': self.layer
                        }
                    }]
                }
            }
        }
        try:
            response = self.client.search(index=index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search on {index_name}: {e}')
            raise OpenSearchError(f'Vector search failed: {e}') from e

        results = [{
            'uid': hit['_source'].get('uid'),
            'score': hit['_score'],
            'document': hit['_source']
        } for hit in response['hits']['hits']]
        logger.debug(f'Vector search on {index_name} returned {len(results)} results')
        return results

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return self.client.indices.exists(index=self.index_name(FACT_INDEX)) in [True, False]
        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False

    def close(self) -> None:
        self.client.close()
