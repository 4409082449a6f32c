"""
Tool descriptions with the phrases that should make a client reach for each tool.
"""

from typing import Optional

STORE = 'store'
SEARCH = 'search'
GRAPH = 'graph'
LIST = 'list'

DEFAULT_TRIGGERS = {
    STORE: 'запомни, память, обнови память, сохрани в памяти, remember',
    SEARCH: 'вспомни, что помнишь, поищи в памяти, recall, search memory',
    GRAPH: 'покажи граф, что связано с, graph, connections',
    LIST: "что в памяти, покажи всю память, list entities, what's in memory",
}

BASE_DESCRIPTIONS = {
    STORE: 'Store a fact in the semantic knowledge graph.',
    SEARCH: 'Search the knowledge graph semantically. Returns facts matching the query by meaning.',
    GRAPH: 'Explore the knowledge graph around an entity. Returns connected facts and entities.',
    LIST: 'List all entities in the knowledge graph. Optionally filtered by name pattern.',
}


def build_description(tool: str, custom_triggers: Optional[str] = None) -> str:
    """Base description plus default and operator-supplied (comma-separated) triggers."""
    triggers = DEFAULT_TRIGGERS[tool]
    if custom_triggers:
        extra = ', '.join(t.strip() for t in custom_triggers.split(',') if t.strip())
        if extra:
            triggers = f'{triggers}, {extra}'
    return f'{BASE_DESCRIPTIONS[tool]} Use when user says: {triggers}.'
