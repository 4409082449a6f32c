"""
MCP Interface Layer using fastmcp, plus the operator command line.
"""
import argparse
import asyncio
import json
import sys
from typing import Annotated, List, Optional, Sequence

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from . import __version__
from .backends.factory import create_backend, create_memory_backend
from .models.core import CandidateFact, EntityInfo, GraphResult, SearchResult, StoredFact
from .services.dual_memory import DualMemoryBackend
from .services.memory_management import DEFAULT_GRAPH_DEPTH, DEFAULT_SEARCH_LIMIT, MAX_GRAPH_DEPTH, MAX_SEARCH_LIMIT, MemoryService
from .services.promotion import PromotionUnavailableError, parse_selection, promote_candidates
from .triggers import GRAPH, LIST, SEARCH, STORE, build_description
from .utils.config import AppConfig, ConfigurationError, load_config
from .utils.embeddings import create_embedder
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

SERVER_NAME = 'semantic-memory'


def format_stored(stored: StoredFact) -> str:
    return f'Stored: [{stored.subject}] -[{stored.predicate}]-> [{stored.object}]\nFact: {stored.content}'


def format_search_results(results: List[SearchResult]) -> str:
    if not results:
        return 'No matching facts found.'
    return '\n\n'.join(f'[{r.score:.3f}] [{r.subject}] -[{r.predicate}]-> [{r.object}]\n'
                       f'  Fact: {r.content}\n'
                       f'  Context: {r.context}\n'
                       f"  Source: {r.source or 'n/a'}" for r in results)


def format_graph(result: Optional[GraphResult], entity: str) -> str:
    if result is None:
        return f"Entity '{entity}' not found."

    lines = [f'Graph around: {result.matched_name}']
    lines.append(f"\nConnected entities ({len(result.entities)}): {', '.join(sorted(result.entities)) or 'none'}")
    lines.append(f'\nFacts ({len(result.facts)}):')
    for fact in result.facts:
        lines.append(f'  [{fact.subject}] -[{fact.predicate}]-> [{fact.object}]: {fact.content}')
    return '\n'.join(lines)


def format_entities(entities: List[EntityInfo]) -> str:
    if not entities:
        return 'No entities found.'
    lines = [f'Entities ({len(entities)}):']
    lines.extend(f'  {e.name} ({e.fact_count} facts)' for e in entities)
    return '\n'.join(lines)


def create_server(service: MemoryService, config: AppConfig) -> FastMCP:
    """Build the FastMCP application exposing the memory tools."""
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool(name='memory_store', description=build_description(STORE, config.triggers.store))
    async def memory_store(subject: Annotated[str, Field(description="Subject entity in English (e.g. 'billing-service')")],
                           predicate: Annotated[str, Field(description="Relationship verb in English (e.g. 'uses', 'depends_on')")],
                           object: Annotated[str, Field(description="Object entity in English (e.g. 'PostgreSQL 16')")],
                           fact: Annotated[str, Field(description='Full fact description (any language)')],
                           context: Annotated[str, Field(description='Source context or snippet')],
                           source: Annotated[Optional[str], Field(description='Source file path or URL')] = None) -> str:
        try:
            stored = await service.store(subject, predicate, object, fact, context, source)
        except Exception as e:
            logger.error(f'memory_store failed: {e}')
            raise ToolError(f'Memory store failed: {e}') from e
        return format_stored(stored)

    @mcp.tool(name='memory_search', description=build_description(SEARCH, config.triggers.search))
    async def memory_search(query: Annotated[str, Field(description='Search query in any language')],
                            limit: Annotated[int, Field(ge=1, le=MAX_SEARCH_LIMIT, description='Max results')] = DEFAULT_SEARCH_LIMIT
                            ) -> str:
        try:
            results = await service.search(query, limit)
        except Exception as e:
            logger.error(f'memory_search failed: {e}')
            raise ToolError(f'Memory search failed: {e}') from e
        return format_search_results(results)

    @mcp.tool(name='memory_graph', description=build_description(GRAPH, config.triggers.graph))
    async def memory_graph(entity: Annotated[str, Field(description='Entity name to explore (fuzzy match supported)')],
                           depth: Annotated[int, Field(ge=1, le=MAX_GRAPH_DEPTH, description='Traversal depth')] = DEFAULT_GRAPH_DEPTH
                           ) -> str:
        try:
            result = await service.graph(entity, depth)
        except Exception as e:
            logger.error(f'memory_graph failed: {e}')
            raise ToolError(f'Memory graph failed: {e}') from e
        return format_graph(result, entity)

    @mcp.tool(name='memory_list_entities', description=build_description(LIST, config.triggers.list))
    async def memory_list_entities(pattern: Annotated[Optional[str],
                                                      Field(description='Optional filter pattern (case-insensitive contains match)')] = None
                                   ) -> str:
        try:
            entities = await service.list_entities(pattern)
        except Exception as e:
            logger.error(f'memory_list_entities failed: {e}')
            raise ToolError(f'Memory list failed: {e}') from e
        return format_entities(entities)

    return mcp


def serve(config: AppConfig) -> int:
    backend = create_memory_backend(config)
    try:
        service = MemoryService(backend, create_embedder(config))
        mcp = create_server(service, config)

        logger.info(f'Starting {SERVER_NAME} MCP server ({config.mcp.transport})')
        if config.mcp.transport == 'stdio':
            mcp.run(transport='stdio')
        else:
            mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
    finally:
        asyncio.run(backend.close())
    return 0


def prompt_selection(candidates: List[CandidateFact]) -> Sequence[int]:
    """Interactive operator selection on the terminal."""
    print(f'\nGlobal candidates ({len(candidates)}):\n')
    for i, c in enumerate(candidates, start=1):
        print(f'  {i}) [{c.subject}] -[{c.predicate}]-> [{c.object}]')
        print(f'     {c.content}')

    try:
        answer = input('\nPromote: Y (all), N (cancel), or numbers (e.g. 1,3,5): ')
    except EOFError:
        answer = ''

    indices = parse_selection(answer, len(candidates))
    if not indices:
        print('Cancelled.')
    return indices


async def _promote(config: AppConfig) -> int:
    project = create_backend(config, config.project)
    try:
        global_ = create_backend(config, config.global_layer)
    except BaseException:
        await project.close()
        raise

    try:
        report = await promote_candidates(project, global_, create_embedder(config), prompt_selection)
    except PromotionUnavailableError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        # Every layer is closed; failures surface together as LayerCloseError
        await DualMemoryBackend(project, global_).close()

    if report.candidates == 0:
        print('No global candidates to promote.')
        return 0
    if report.selected:
        print(f'\nPromoted {report.promoted} fact(s) to global memory.')
    if report.failed:
        print(f'{report.failed} fact(s) failed to promote, see the log for details.', file=sys.stderr)
        return 1
    return 0


def promote(config: AppConfig) -> int:
    if not config.dual_mode:
        print('Promote is only available in dual mode.\n'
              'Set SEMANTIC_MEMORY_GLOBAL_DIR to enable per-project memory.',
              file=sys.stderr)
        return 1
    return asyncio.run(_promote(config))


def health(config: AppConfig) -> int:
    status = asyncio.run(get_health_status(config))
    print(json.dumps(status, indent=2))
    return 0 if all(s.get('healthy', False) for s in status.values()) else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog='semantic-memory-mcp', description='Semantic memory MCP server')
    parser.add_argument('command',
                        nargs='?',
                        default='serve',
                        choices=['serve', 'promote', 'health', 'version'],
                        help='serve (default): start the MCP server; promote: move global candidates '
                        'from project to global memory; health: check components; version: show version')
    args = parser.parse_args(argv)

    if args.command == 'version':
        print(f'{SERVER_NAME}-mcp {__version__}')
        return 0

    config = load_config()
    setup_logging(config.log_level)

    commands = {'serve': serve, 'promote': promote, 'health': health}
    try:
        return commands[args.command](config)
    except ConfigurationError as e:
        logger.error(str(e))
        print(f'Configuration error: {e}', file=sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
