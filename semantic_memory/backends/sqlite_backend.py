"""
Relational + vector-index backend: SQLite tables for entities and facts, ``sqlite-vec``
``vec0`` virtual tables for the embeddings.

Embedding rows share their rowid with the entity/fact they belong to. Every
blocking sqlite call runs in a worker thread under a per-store lock, so calls
on one store are applied in the order they were issued.
"""

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import numpy as np
import sqlite_vec

from ..models.core import CandidateFact, Entity, EntityInfo, Fact, GraphFact, GraphResult, Scope, SearchResult
from ..utils.config import ConfigurationError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_datetime
from .base import ReferentialIntegrityError, check_dimension, dimension_mismatch_message

logger = get_logger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS facts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject_id INTEGER NOT NULL REFERENCES entities(id),
    predicate TEXT NOT NULL,
    object_id INTEGER NOT NULL REFERENCES entities(id),
    content TEXT NOT NULL,
    context TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT '',
    scope_candidate TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_facts_subject ON facts(subject_id);
CREATE INDEX IF NOT EXISTS idx_facts_object ON facts(object_id);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# vec0 only honours LIMIT on SQLite 3.41+; the k constraint works on every version
_KNN_SQL = """
SELECT
    e_subj.name AS subject,
    f.predicate,
    e_obj.name AS object,
    f.content,
    f.context,
    f.source,
    (1.0 - knn.distance) AS score
FROM (
    SELECT rowid, distance
    FROM fact_embeddings
    WHERE embedding MATCH ?
      AND k = ?
) knn
JOIN facts f ON f.id = knn.rowid
JOIN entities e_subj ON e_subj.id = f.subject_id
JOIN entities e_obj ON e_obj.id = f.object_id
ORDER BY knn.distance ASC
"""

# Shortest matching name wins; instr() keeps '%' and '_' in the query literal
_FUZZY_FIND_SQL = """
SELECT id, name FROM entities
WHERE instr(lower(name), lower(?)) > 0
ORDER BY length(name) ASC, id ASC
LIMIT 1
"""

# Walks facts in both directions, one hop per recursion step
_TRAVERSE_SQL = """
WITH RECURSIVE graph(entity_id, depth) AS (
    SELECT ?, 0
    UNION
    SELECT CASE WHEN f.subject_id = g.entity_id THEN f.object_id ELSE f.subject_id END,
           g.depth + 1
    FROM graph g
    JOIN facts f ON f.subject_id = g.entity_id OR f.object_id = g.entity_id
    WHERE g.depth < ?
)
SELECT DISTINCT e.id, e.name
FROM graph g
JOIN entities e ON e.id = g.entity_id
WHERE g.entity_id != ?
ORDER BY e.name
"""

_LIST_ENTITIES_SQL = """
SELECT e.name, COUNT(f.id) AS fact_count
FROM entities e
LEFT JOIN facts f ON f.subject_id = e.id
{where}
GROUP BY e.id
ORDER BY e.name
"""

_CANDIDATES_SQL = """
SELECT f.id, e_subj.name AS subject, f.predicate, e_obj.name AS object,
       f.content, f.context, f.source, f.scope_candidate
FROM facts f
JOIN entities e_subj ON e_subj.id = f.subject_id
JOIN entities e_obj ON e_obj.id = f.object_id
WHERE f.scope_candidate = ?
ORDER BY f.id
"""


def _vec_to_blob(vec: Sequence[float]) -> bytes:
    return sqlite_vec.serialize_float32(list(vec))


def _blob_to_vec(blob: bytes) -> List[float]:
    return np.frombuffer(blob, dtype=np.float32).tolist()


class SQLiteBackend:
    """Entity/fact store on a single SQLite file.

    Parameters
    ----------
    db_path:
        Database file, created with its parent directory when missing.
    dimension:
        Embedding dimension. Locked into the ``meta`` table on first open;
        reopening with a different value raises ``ConfigurationError``.
    """

    def __init__(self, db_path: str, dimension: int, layer: str = 'project') -> None:
        self.db_path = db_path
        self.dimension = dimension
        self.layer = layer
        self._lock = threading.Lock()

        if db_path != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        try:
            self._init_db()
        except BaseException:
            self._conn.close()
            raise

        logger.info(f'Opened SQLite {layer} store at {db_path} (dim={dimension})')

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        conn = self._conn
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)

        conn.execute('PRAGMA journal_mode = WAL')
        conn.execute('PRAGMA foreign_keys = ON')
        conn.executescript(_SCHEMA_SQL)
        self._migrate()
        self._lock_dimension()

        conn.execute(f'CREATE VIRTUAL TABLE IF NOT EXISTS entity_embeddings USING vec0('
                     f'embedding float[{self.dimension}] distance_metric=cosine)')
        conn.execute(f'CREATE VIRTUAL TABLE IF NOT EXISTS fact_embeddings USING vec0('
                     f'embedding float[{self.dimension}] distance_metric=cosine)')
        conn.commit()

    def _migrate(self) -> None:
        """Add columns introduced after a database was first created."""
        columns = {row['name'] for row in self._conn.execute('PRAGMA table_info(facts)')}
        if 'scope_candidate' not in columns:
            logger.info(f'Adding scope_candidate column to {self.db_path}')
            self._conn.execute('ALTER TABLE facts ADD COLUMN scope_candidate TEXT')

    def _lock_dimension(self) -> None:
        row = self._conn.execute("SELECT value FROM meta WHERE key = 'embedding_dim'").fetchone()
        if row is None:
            self._conn.execute("INSERT INTO meta (key, value) VALUES ('embedding_dim', ?)", (str(self.dimension),))
            return

        stored = int(row['value'])
        if stored != self.dimension:
            raise ConfigurationError(dimension_mismatch_message(stored, self.dimension))

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return fn(*args)

    async def close(self) -> None:
        """Close the database connection."""
        await self._run(self._conn.close)
        logger.debug(f'Closed SQLite {self.layer} store at {self.db_path}')

    async def health_check(self) -> bool:
        await self._run(lambda: self._conn.execute('SELECT 1').fetchone())
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def find_or_create_entity(self, name: str, embedding: Sequence[float]) -> int:
        check_dimension(embedding, self.dimension, f"Entity '{name}'")
        return await self._run(self._find_or_create_entity, name, _vec_to_blob(embedding))

    def _find_or_create_entity(self, name: str, blob: bytes) -> int:
        with self._conn:
            self._conn.execute('INSERT OR IGNORE INTO entities (name) VALUES (?)', (name,))
            entity_id = self._conn.execute('SELECT id FROM entities WHERE name = ?', (name,)).fetchone()['id']
            # vec0 has no upsert; replace the embedding row
            self._conn.execute('DELETE FROM entity_embeddings WHERE rowid = ?', (entity_id,))
            self._conn.execute('INSERT INTO entity_embeddings (rowid, embedding) VALUES (?, ?)', (entity_id, blob))
        logger.debug(f"Entity '{name}' -> {entity_id}")
        return entity_id

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
                               _vec_to_blob(embedding), scope)

    def _store_fact(self, subject_id: int, predicate: str, object_id: int, content: str, context: str, source: str,
                    blob: bytes, scope: Optional[str]) -> int:
        try:
            with self._conn:
                cursor = self._conn.execute(
                    'INSERT INTO facts (subject_id, predicate, object_id, content, context, source, scope_candidate) '
                    'VALUES (?, ?, ?, ?, ?, ?, ?)', (subject_id, predicate, object_id, content, context, source, scope))
                fact_id = cursor.lastrowid
                self._conn.execute('INSERT INTO fact_embeddings (rowid, embedding) VALUES (?, ?)', (fact_id, blob))
        except sqlite3.IntegrityError as e:
            raise ReferentialIntegrityError(f'Fact references unknown entity (subject_id={subject_id}, '
                                            f'object_id={object_id}): {e}') from e
        logger.debug(f'Stored fact {fact_id}: {subject_id} -[{predicate}]-> {object_id} (scope={scope})')
        return fact_id

    async def update_fact_scope(self, fact_id: int, scope: Optional[Scope]) -> None:
        value = Scope(scope).value if scope else None
        await self._run(self._update_fact_scope, fact_id, value)

    def _update_fact_scope(self, fact_id: int, value: Optional[str]) -> None:
        with self._conn:
            self._conn.execute('UPDATE facts SET scope_candidate = ? WHERE id = ?', (value, fact_id))
        logger.debug(f'Fact {fact_id} scope -> {value}')

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_entity(self, name: str) -> Optional[Entity]:
        """Exact-name lookup, including the current embedding."""
        return await self._run(self._get_entity, name)

    def _get_entity(self, name: str) -> Optional[Entity]:
        row = self._conn.execute(
            'SELECT e.id, e.name, e.created_at, v.embedding FROM entities e '
            'LEFT JOIN entity_embeddings v ON v.rowid = e.id WHERE e.name = ?', (name,)).fetchone()
        if row is None:
            return None
        return Entity(id=row['id'],
                      name=row['name'],
                      created_at=to_datetime(row['created_at']),
                      embedding=_blob_to_vec(row['embedding']) if row['embedding'] else [])

    async def get_fact(self, fact_id: int) -> Optional[Fact]:
        """Lookup by id, including the embedding and scope hint."""
        return await self._run(self._get_fact, fact_id)

    def _get_fact(self, fact_id: int) -> Optional[Fact]:
        row = self._conn.execute(
            'SELECT f.*, v.embedding FROM facts f LEFT JOIN fact_embeddings v ON v.rowid = f.id WHERE f.id = ?',
            (fact_id,)).fetchone()
        if row is None:
            return None
        return Fact(id=row['id'],
                    subject_id=row['subject_id'],
                    predicate=row['predicate'],
                    object_id=row['object_id'],
                    content=row['content'],
                    context=row['context'],
                    source=row['source'],
                    embedding=_blob_to_vec(row['embedding']) if row['embedding'] else [],
                    scope_candidate=Scope(row['scope_candidate']) if row['scope_candidate'] else None,
                    created_at=to_datetime(row['created_at']))

    async def search_facts(self, query_embedding: Sequence[float], limit: int) -> List[SearchResult]:
        check_dimension(query_embedding, self.dimension, 'Query')
        rows = await self._run(self._fetch_all, _KNN_SQL, (_vec_to_blob(query_embedding), limit))
        return [
            SearchResult(subject=row['subject'],
                         predicate=row['predicate'],
                         object=row['object'],
                         content=row['content'],
                         context=row['context'],
                         source=row['source'] or '',
                         score=float(row['score'])) for row in rows
        ]

    async def graph_traverse(self, entity_query: str, depth: int) -> Optional[GraphResult]:
        return await self._run(self._graph_traverse, entity_query, depth)

    def _graph_traverse(self, entity_query: str, depth: int) -> Optional[GraphResult]:
        match = self._conn.execute(_FUZZY_FIND_SQL, (entity_query,)).fetchone()
        if match is None:
            return None

        start_id = match['id']
        connected = self._conn.execute(_TRAVERSE_SQL, (start_id, depth, start_id)).fetchall()

        ids = [start_id] + [row['id'] for row in connected]
        placeholders = ','.join('?' * len(ids))
        fact_rows = self._conn.execute(
            f"""
            SELECT e_subj.name AS subject, f.predicate, e_obj.name AS object, f.content
            FROM facts f
            JOIN entities e_subj ON e_subj.id = f.subject_id
            JOIN entities e_obj ON e_obj.id = f.object_id
            WHERE f.subject_id IN ({placeholders}) OR f.object_id IN ({placeholders})
            ORDER BY f.created_at DESC, f.id DESC
            """, ids + ids).fetchall()

        return GraphResult(matched_name=match['name'],
                           entities=[row['name'] for row in connected],
                           facts=[
                               GraphFact(subject=row['subject'],
                                         predicate=row['predicate'],
                                         object=row['object'],
                                         content=row['content']) for row in fact_rows
                           ])

    async def list_entities(self, pattern: Optional[str] = None) -> List[EntityInfo]:
        if pattern:
            sql = _LIST_ENTITIES_SQL.format(where='WHERE instr(lower(e.name), lower(?)) > 0')
            rows = await self._run(self._fetch_all, sql, (pattern,))
        else:
            rows = await self._run(self._fetch_all, _LIST_ENTITIES_SQL.format(where=''), ())
        return [EntityInfo(name=row['name'], fact_count=row['fact_count']) for row in rows]

    async def get_candidate_facts(self, scope: Scope) -> List[CandidateFact]:
        rows = await self._run(self._fetch_all, _CANDIDATES_SQL, (Scope(scope).value,))
        return [
            CandidateFact(fact_id=row['id'],
                          subject=row['subject'],
                          predicate=row['predicate'],
                          object=row['object'],
                          content=row['content'],
                          context=row['context'],
                          source=row['source'] or '',
                          scope_candidate=Scope(row['scope_candidate'])) for row in rows
        ]

    def _fetch_all(self, sql: str, params: Sequence[Any]) -> List[sqlite3.Row]:
        return self._conn.execute(sql, params).fetchall()
