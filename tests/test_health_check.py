import pytest

from helpers import FakeEmbedder
from semantic_memory.utils import health_check
from semantic_memory.utils.config import load_config


@pytest.fixture(autouse=True)
def fake_embedder(monkeypatch):
    monkeypatch.setattr(health_check, 'create_embedder', lambda config: FakeEmbedder(config.embedding.dimension))


@pytest.mark.asyncio
async def test_all_components_healthy(app_config):
    status = await health_check.get_health_status(app_config)

    assert set(status) == {'embeddings', 'project_store'}
    assert status['embeddings']['healthy']
    assert status['project_store']['healthy']
    assert await health_check.check_health(app_config)


@pytest.mark.asyncio
async def test_broken_layer_reported(clean_env, tmp_path):
    clean_env.setenv('EMBEDDING_PROVIDER', 'ollama')
    clean_env.setenv('SEMANTIC_MEMORY_GLOBAL_DIR', str(tmp_path / 'global'))
    clean_env.setenv('GLOBAL_STORAGE_PROVIDER', 'redis')
    config = load_config()

    status = await health_check.get_health_status(config)

    assert status['project_store']['healthy']
    assert not status['global_store']['healthy']
    assert 'redis' in status['global_store']['error']
    assert not await health_check.check_health(config)
