"""
Gremlin graph client (Amazon Neptune or any TinkerPop server) for the graph-native backend.

Model: ``Entity`` and ``Fact`` vertices joined by ``SUBJECT_OF`` (entity -> fact)
and ``OBJECT_IS`` (fact -> entity) edges. Every vertex carries a ``layer``
property so several logical stores can share one database, and a ``uid``
integer handle allocated from the layer's ``Meta`` vertex.
"""

from functools import wraps
from typing import Any, Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import Cardinality, P, TextP

from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import to_seconds_str

logger = get_logger(__name__)

ENTITY = 'Entity'
FACT = 'Fact'
META = 'Meta'
SUBJECT_OF = 'SUBJECT_OF'
OBJECT_IS = 'OBJECT_IS'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def gremlin_operation(func):
    """Log and wrap driver errors as NeptuneError.

    A closed transport is reconnected so the next call can succeed; the failed
    call itself is not replayed.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except NeptuneError:
            raise
        except Exception as e:
            logger.error(f'Error in {func.__name__}: {e}')
            if 'closing transport' in str(e).lower() or 'closed' in str(e).lower():
                logger.warning('Gremlin connection lost, reconnecting for subsequent calls')
                self.close()
                self._connect()
            raise NeptuneError(f'Failed to {func.__name__}: {e}') from e

    return wrapper


class NeptuneClient:
    """Gremlin client scoped to one storage layer."""

    def __init__(self, config: NeptuneConfig, layer: str):
        """
        Initialize Gremlin connection.

        Args:
            config: NeptuneConfig instance with connection parameters
            layer: Layer name every vertex of this client is tagged with
        """
        self.config = config
        self.layer = layer
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Gremlin endpoint {config.endpoint}:{config.port} for layer {layer}')

    def _connect(self):
        """Establish connection to the Gremlin endpoint."""
        scheme = 'wss' if self.config.use_ssl else 'ws'
        conn_string = f'{scheme}://{self.config.endpoint}:{self.config.port}/gremlin'

        headers = None
        if self.config.iam_auth:
            credentials = Session().get_credentials()
            if credentials is None:
                raise NeptuneError('No AWS credentials found')
            creds = credentials.get_frozen_credentials()
            region = self.config.region or Session().region_name or 'us-east-1'

            # Create signed request for WebSocket connection
            request = AWSRequest(method='GET', url=conn_string, data=None)
            SigV4Auth(creds, 'neptune-db', region).add_auth(request)
            headers = dict(request.headers.items())

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=headers,
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Gremlin connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def _entities(self):
        return self.g.V().has_label(ENTITY).has('layer', self.layer)

    def _facts(self):
        return self.g.V().has_label(FACT).has('layer', self.layer)

    def _meta(self):
        return self.g.V().has_label(META).has('layer', self.layer)

    # ── Metadata ──────────────────────────────────────────────

    @gremlin_operation
    def get_embedding_dim(self) -> Optional[int]:
        """Return the dimension locked for this layer, or None for a fresh layer."""
        values = self._meta().values('embedding_dim').to_list()
        return int(values[0]) if values else None

    @gremlin_operation
    def create_meta(self, dimension: int) -> None:
        self.g.add_v(META).property('layer', self.layer)\
            .property('embedding_dim', dimension)\
            .property('next_id', 1)\
            .iterate()
        logger.info(f'Locked embedding dimension {dimension} for layer {self.layer}')

    @gremlin_operation
    def allocate_id(self) -> int:
        """Hand out the next integer handle of this layer."""
        current = int(self._meta().values('next_id').next())
        self._meta().property(Cardinality.single, 'next_id', current + 1).iterate()
        return current

    # ── Writes ────────────────────────────────────────────────

    @gremlin_operation
    def find_entity_id(self, name: str) -> Optional[int]:
        values = self._entities().has('name', name).values('uid').to_list()
        return int(values[0]) if values else None

    @gremlin_operation
    def entity_exists(self, uid: int) -> bool:
        return self._entities().has('uid', uid).limit(1).count().next() > 0

    @gremlin_operation
    def create_entity_vertex(self, uid: int, name: str, created_at: Optional[str] = None) -> None:
        self.g.add_v(ENTITY).property('uid', uid)\
            .property('layer', self.layer)\
            .property('name', name)\
            .property('name_lower', name.lower())\
            .property('created_at', created_at or to_seconds_str())\
            .iterate()
        logger.debug(f'Created entity vertex {uid}: {name}')

    @gremlin_operation
    def create_fact_vertex(self,
                           uid: int,
                           subject_uid: int,
                           predicate: str,
                           object_uid: int,
                           content: str,
                           context: str,
                           source: str,
                           scope_candidate: Optional[str] = None,
                           created_at: Optional[str] = None) -> None:
        """Create a fact vertex and its SUBJECT_OF / OBJECT_IS edges."""
        subject = self._entities().has('uid', subject_uid).next()
        object_vertex = self._entities().has('uid', object_uid).next()

        fact_traversal = self.g.add_v(FACT).property('uid', uid)\
            .property('layer', self.layer)\
            .property('predicate', predicate)\
            .property('content', content)\
            .property('context', context)\
            .property('source', source)\
            .property('created_at', created_at or to_seconds_str())

        if scope_candidate:
            fact_traversal = fact_traversal.property('scope_candidate', scope_candidate)

        fact = fact_traversal.next()
        self.g.V(subject).add_e(SUBJECT_OF).to(fact).iterate()
        self.g.V(fact).add_e(OBJECT_IS).to(object_vertex).iterate()
        logger.debug(f'Created fact vertex {uid}: {subject_uid} -[{predicate}]-> {object_uid}')

    @gremlin_operation
    def set_fact_scope(self, uid: int, scope_candidate: Optional[str]) -> None:
        if scope_candidate:
            self._facts().has('uid', uid).property(Cardinality.single, 'scope_candidate', scope_candidate).iterate()
        else:
            self._facts().has('uid', uid).properties('scope_candidate').drop().iterate()

    # ── Reads ─────────────────────────────────────────────────

    def _fact_projection(self, fact_traversal):
        return fact_traversal.project('uid', 'subject', 'subject_uid', 'predicate', 'object', 'object_uid',
                                      'content', 'context', 'source', 'scope_candidate', 'created_at')\
            .by('uid')\
            .by(__.in_(SUBJECT_OF).values('name'))\
            .by(__.in_(SUBJECT_OF).values('uid'))\
            .by('predicate')\
            .by(__.out(OBJECT_IS).values('name'))\
            .by(__.out(OBJECT_IS).values('uid'))\
            .by('content')\
            .by('context')\
            .by('source')\
            .by(__.coalesce(__.values('scope_candidate'), __.constant('')))\
            .by('created_at')

    @gremlin_operation
    def find_entities_containing(self, needle: str) -> List[Dict[str, Any]]:
        """Entities whose lower-cased name contains ``needle`` (lower-cased)."""
        return self._entities().has('name_lower', TextP.containing(needle.lower()))\
            .project('uid', 'name').by('uid').by('name').to_list()

    @gremlin_operation
    def get_facts_touching(self, uids: List[int]) -> List[Dict[str, Any]]:
        """Facts whose subject or object is one of ``uids``."""
        if not uids:
            return []
        facts = self._entities().has('uid', P.within(list(uids))).both(SUBJECT_OF, OBJECT_IS).has_label(FACT).dedup()
        return self._fact_projection(facts).to_list()

    @gremlin_operation
    def get_facts_by_uid(self, uids: List[int]) -> List[Dict[str, Any]]:
        if not uids:
            return []
        return self._fact_projection(self._facts().has('uid', P.within(list(uids)))).to_list()

    @gremlin_operation
    def get_candidate_facts(self, scope: str) -> List[Dict[str, Any]]:
        return self._fact_projection(self._facts().has('scope_candidate', scope)).to_list()

    @gremlin_operation
    def list_entities(self, pattern: Optional[str] = None) -> List[Dict[str, Any]]:
        """Entity names with the number of facts each is the subject of."""
        entities = self._entities()
        if pattern:
            entities = entities.has('name_lower', TextP.containing(pattern.lower()))
        return entities.project('name', 'fact_count').by('name').by(__.out(SUBJECT_OF).count()).to_list()

    @gremlin_operation
    def health_check(self) -> bool:
        """
        Perform a health check on the Gremlin endpoint.

        Returns:
            True if service is healthy
        """
        self.g.V().limit(1).count().next()
        return True
