"""
Backend selection by configuration.
"""

from ..services.dual_memory import DualMemoryBackend
from ..utils.config import NEPTUNE, SQLITE, STORAGE_PROVIDERS, AppConfig, ConfigurationError, LayerConfig
from ..utils.logging_config import get_logger
from .base import StorageBackend

logger = get_logger(__name__)


def create_backend(config: AppConfig, layer: LayerConfig) -> StorageBackend:
    """Open the physical store of one layer.

    Raises:
        ConfigurationError: Unknown provider, or the store's locked embedding
            dimension differs from the configured one
    """
    if layer.provider == SQLITE:
        from .sqlite_backend import SQLiteBackend
        return SQLiteBackend(layer.db_path, config.embedding.dimension, layer=layer.name)
    if layer.provider == NEPTUNE:
        from .graph_backend import GraphBackend
        return GraphBackend(config, layer=layer.name)
    raise ConfigurationError(f"Unknown storage provider '{layer.provider}' for the {layer.name} layer; "
                             f"expected one of: {', '.join(STORAGE_PROVIDERS)}")


def create_memory_backend(config: AppConfig) -> StorageBackend:
    """The store the tools run against: one layer, or both merged in dual mode."""
    project = create_backend(config, config.project)
    if not config.dual_mode:
        logger.info(f'Single-layer mode: {config.project.provider} storage backend')
        return project

    global_ = create_backend(config, config.global_layer)
    logger.info(f'Dual mode: project ({config.project.provider}) + global ({config.global_layer.provider}) layers')
    return DualMemoryBackend(project, global_)
