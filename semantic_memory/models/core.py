"""
Core data models for the semantic knowledge graph.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Scope(str, Enum):
    """Scope hint carried by project-layer facts."""
    GLOBAL = 'global'
    PROJECT = 'project'


@dataclass
class Entity:
    """A named node of the knowledge graph."""
    id: int  # Opaque handle, only meaningful inside the store that issued it
    name: str
    created_at: Optional[datetime] = None
    embedding: List[float] = field(default_factory=list)


@dataclass
class Fact:
    """A subject-predicate-object triple with free-text content and an embedding."""
    id: int
    subject_id: int
    predicate: str
    object_id: int
    content: str
    context: str
    source: str
    embedding: List[float] = field(default_factory=list)
    scope_candidate: Optional[Scope] = None  # Project layer only
    created_at: Optional[datetime] = None


@dataclass
class SearchResult:
    """A fact returned by vector search, scored as 1 - cosine distance."""
    subject: str
    predicate: str
    object: str
    content: str
    context: str
    source: str
    score: float
    source_layer: Optional[str] = None  # Set by the dual-layer coordinator

    @property
    def triple(self):
        return (self.subject, self.predicate, self.object)


@dataclass
class GraphFact:
    """A fact as seen from graph traversal."""
    subject: str
    predicate: str
    object: str
    content: str

    @property
    def triple(self):
        return (self.subject, self.predicate, self.object)


@dataclass
class GraphResult:
    """Neighbourhood of the entity matched by a fuzzy name query."""
    matched_name: str
    entities: List[str] = field(default_factory=list)
    facts: List[GraphFact] = field(default_factory=list)


@dataclass
class EntityInfo:
    """Entity name with the number of facts it is the subject of."""
    name: str
    fact_count: int


@dataclass
class CandidateFact:
    """A project-layer fact carrying a scope tag, offered for promotion."""
    fact_id: int
    subject: str
    predicate: str
    object: str
    content: str
    context: str
    source: str
    scope_candidate: Scope


@dataclass
class StoredFact:
    """Confirmation returned after a fact has been written."""
    fact_id: int
    subject: str
    predicate: str
    object: str
    content: str
