"""Shared fixtures: isolated environment and SQLite layers on tmp_path."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from helpers import DIM, FakeEmbedder
from semantic_memory.backends.sqlite_backend import SQLiteBackend
from semantic_memory.utils.config import load_config

ENV_KEYS = [
    "SEMANTIC_MEMORY_DIR", "SEMANTIC_MEMORY_DB", "STORAGE_PROVIDER", "SEMANTIC_MEMORY_GLOBAL_DIR",
    "SEMANTIC_MEMORY_GLOBAL_DB", "GLOBAL_STORAGE_PROVIDER", "EMBEDDING_PROVIDER", "EMBEDDING_DIM", "MCP_TRANSPORT",
    "MCP_HOST", "MCP_PORT", "MEMORY_TRIGGERS_STORE", "MEMORY_TRIGGERS_SEARCH", "MEMORY_TRIGGERS_GRAPH",
    "MEMORY_TRIGGERS_LIST", "LOG_LEVEL", "OLLAMA_URL", "OLLAMA_MODEL",
]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SEMANTIC_MEMORY_DIR", str(tmp_path / "project"))
    return monkeypatch


@pytest.fixture
def app_config(clean_env):
    clean_env.setenv("EMBEDDING_PROVIDER", "ollama")
    clean_env.setenv("EMBEDDING_DIM", str(DIM))
    return load_config()


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    backend = SQLiteBackend(str(tmp_path / "project" / "memory.db"), DIM)
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def global_store(tmp_path: Path):
    backend = SQLiteBackend(str(tmp_path / "global" / "memory.db"), DIM, layer="global")
    yield backend
    await backend.close()
