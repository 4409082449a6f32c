"""
Predicate-based scope hints for newly stored facts.
"""

from ..models.core import Scope

# Stable technical and organizational truths
GLOBAL_PREDICATES = frozenset({
    'uses',
    'depends_on',
    'written_in',
    'deployed_on',
    'built_with',
    'integrates_with',
    'prefers',
    'convention',
    'has_version',
    'runs_on',
})

# Work in progress, local to one project
PROJECT_PREDICATES = frozenset({
    'blocked_by',
    'workaround_for',
    'todo',
    'bug_in',
    'fixed_by',
    'needs_refactor',
    'has_pattern',
    'test_for',
    'config_for',
})


def classify_scope(predicate: str) -> Scope:
    """Classify a predicate as a global or project scope candidate.

    Unknown predicates are project-scoped.
    """
    normalized = predicate.strip().lower()
    if normalized in GLOBAL_PREDICATES:
        return Scope.GLOBAL
    return Scope.PROJECT
