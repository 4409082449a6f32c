import pytest

from semantic_memory.backends.factory import create_backend, create_memory_backend
from semantic_memory.backends.sqlite_backend import SQLiteBackend
from semantic_memory.services.dual_memory import DualMemoryBackend
from semantic_memory.utils.config import ConfigurationError, LayerConfig, load_config


@pytest.mark.asyncio
async def test_single_layer_mode(app_config):
    backend = create_memory_backend(app_config)
    try:
        assert isinstance(backend, SQLiteBackend)
        assert backend.layer == 'project'
    finally:
        await backend.close()


@pytest.mark.asyncio
async def test_dual_mode(clean_env, tmp_path):
    clean_env.setenv('EMBEDDING_PROVIDER', 'ollama')
    clean_env.setenv('SEMANTIC_MEMORY_GLOBAL_DIR', str(tmp_path / 'global'))

    backend = create_memory_backend(load_config())
    try:
        assert isinstance(backend, DualMemoryBackend)
        assert backend.global_.layer == 'global'
        assert (tmp_path / 'global' / 'memory.db').exists()
    finally:
        await backend.close()


def test_unknown_provider(app_config):
    layer = LayerConfig(name='global', provider='redis', db_path='unused')

    with pytest.raises(ConfigurationError, match="Unknown storage provider 'redis' for the global layer"):
        create_backend(app_config, layer)
