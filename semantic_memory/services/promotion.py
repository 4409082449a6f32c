"""
Operator-driven promotion of project facts tagged ``global`` into the global layer.

Promotion is additive: the global layer receives a new fact with freshly
computed embeddings and the project fact only loses its candidate tag.
Failures are per candidate; completed promotions are never rolled back.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Sequence

from ..backends.base import StorageBackend, supports_candidates
from ..models.core import CandidateFact, Scope
from ..utils.embeddings import Embedder
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

SelectFn = Callable[[List[CandidateFact]], Sequence[int]]


class PromotionUnavailableError(Exception):
    """The project layer cannot list candidate facts."""
    pass


@dataclass
class PromotionReport:
    """Outcome of one promotion batch."""
    candidates: int
    selected: int
    promoted: int
    failed: int


def select_all(candidates: List[CandidateFact]) -> List[int]:
    return list(range(len(candidates)))


def parse_selection(answer: str, count: int) -> List[int]:
    """Turn an operator answer into 0-based candidate indices.

    ``y`` selects everything, ``n`` or an empty answer nothing; otherwise a
    comma-separated list of 1-based numbers, invalid entries are dropped.
    """
    answer = answer.strip().lower()
    if answer in ('', 'n', 'no'):
        return []
    if answer in ('y', 'yes'):
        return list(range(count))

    indices = []
    for part in answer.split(','):
        part = part.strip()
        if not part.isdigit():
            continue
        index = int(part) - 1
        if 0 <= index < count and index not in indices:
            indices.append(index)
    return indices


async def _promote_one(candidate: CandidateFact, project: StorageBackend, global_: StorageBackend,
                       embedder: Embedder) -> None:
    # Re-embed instead of copying vectors: the layers may use different embedding setups
    subject_emb, object_emb, fact_emb = await asyncio.gather(asyncio.to_thread(embedder.embed_document, candidate.subject),
                                                             asyncio.to_thread(embedder.embed_document, candidate.object),
                                                             asyncio.to_thread(embedder.embed_document, candidate.content))

    subject_id = await global_.find_or_create_entity(candidate.subject, subject_emb)
    object_id = await global_.find_or_create_entity(candidate.object, object_emb)
    await global_.store_fact(subject_id, candidate.predicate, object_id, candidate.content, candidate.context,
                             candidate.source, fact_emb)

    await project.update_fact_scope(candidate.fact_id, None)


async def promote_candidates(project: StorageBackend, global_: StorageBackend, embedder: Embedder,
                             select: SelectFn = select_all) -> PromotionReport:
    """Promote the operator-selected global candidates of ``project`` into ``global_``.

    Args:
        project: Project layer, must support candidate facts
        global_: Global layer receiving the promoted facts
        embedder: Provider used to re-embed subject, object and content
        select: Strategy returning the 0-based indices of candidates to promote

    Returns:
        PromotionReport with per-batch counts

    Raises:
        PromotionUnavailableError: If the project layer has no candidate support
    """
    if not supports_candidates(project):
        raise PromotionUnavailableError('Project backend does not support candidate facts; promotion is unavailable')

    candidates = await project.get_candidate_facts(Scope.GLOBAL)
    if not candidates:
        logger.info('No global candidates to promote')
        return PromotionReport(candidates=0, selected=0, promoted=0, failed=0)

    chosen = list(dict.fromkeys(i for i in select(candidates) if 0 <= i < len(candidates)))

    promoted = 0
    failed = 0
    for index in chosen:
        candidate = candidates[index]
        try:
            await _promote_one(candidate, project, global_, embedder)
        except Exception as e:
            failed += 1
            logger.error(f'Failed to promote fact {candidate.fact_id} '
                         f'[{candidate.subject}] -[{candidate.predicate}]-> [{candidate.object}]: {e}')
            continue
        promoted += 1
        logger.debug(f'Promoted fact {candidate.fact_id} [{candidate.subject}] -[{candidate.predicate}]-> [{candidate.object}]')

    logger.info(f'Promoted {promoted} of {len(chosen)} selected candidate(s), {failed} failed')
    return PromotionReport(candidates=len(candidates), selected=len(chosen), promoted=promoted, failed=failed)
