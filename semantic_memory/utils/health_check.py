"""
Health check utilities for the application.
"""

import asyncio
from typing import Any, Dict

from ..backends.factory import create_backend
from .config import AppConfig, LayerConfig
from .embeddings import create_embedder
from .logging_config import get_logger

logger = get_logger(__name__)


async def _check_layer(config: AppConfig, layer: LayerConfig) -> Dict[str, Any]:
    status: Dict[str, Any] = {'service': f'{layer.provider} storage', 'layer': layer.name}
    try:
        backend = create_backend(config, layer)
    except Exception as e:
        status.update(healthy=False, error=str(e))
        return status

    try:
        status['healthy'] = await backend.health_check()
    except Exception as e:
        status.update(healthy=False, error=str(e))
    finally:
        await backend.close()
    return status


def _check_embedder(config: AppConfig) -> Dict[str, Any]:
    status: Dict[str, Any] = {'service': f'{config.embedding.provider} embeddings', 'dimension': config.embedding.dimension}
    try:
        status['healthy'] = create_embedder(config).health_check()
    except Exception as e:
        status.update(healthy=False, error=str(e))
    return status


async def get_health_status(config: AppConfig) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {'embeddings': await asyncio.to_thread(_check_embedder, config)}
    for layer in config.layers():
        health_status[f'{layer.name}_store'] = await _check_layer(config, layer)
    return health_status


async def check_health(config: AppConfig) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = await get_health_status(config)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        logger.warning('Some system components are unhealthy')
    return all_healthy
