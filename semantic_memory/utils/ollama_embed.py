"""
Ollama embedding provider for running against a local model server.
"""

from typing import List

import requests

from .config import OllamaEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OllamaEmbedError(Exception):
    """Custom exception for Ollama embedding errors."""
    pass


class OllamaEmbed:
    """Embedding client for the Ollama ``/api/embed`` endpoint."""

    def __init__(self, config: OllamaEmbedConfig):
        self.config = config
        self.model = config.model
        self.dimension = config.dimension
        self._api_root = config.url.rstrip('/')

        logger.info(f'Initialized Ollama Embed client with model: {self.model} at {self._api_root}')

    def _embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            logger.warning('Empty text provided for embedding')
            return [0.0] * self.dimension

        try:
            response = requests.post(f'{self._api_root}/api/embed',
                                     json={'model': self.model, 'input': text},
                                     timeout=(10, self.config.timeout))
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f'Ollama embedding request failed: {e}')
            raise OllamaEmbedError(f'Ollama embedding failed: {e}') from e

        embeddings = data.get('embeddings') or []
        if not embeddings:
            raise OllamaEmbedError(f'Ollama returned no embedding for model {self.model}')

        embedding = [float(v) for v in embeddings[0]]
        if len(embedding) != self.dimension:
            raise OllamaEmbedError(f'Ollama model {self.model} returned dim={len(embedding)}, '
                                   f'expected dim={self.dimension}; set EMBEDDING_DIM accordingly')
        return embedding

    def embed_document(self, text: str) -> List[float]:
        return self._embed(text)

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)

    def health_check(self) -> bool:
        """Return True when the model answers with a vector of the configured dimension."""
        try:
            return len(self.embed_document('test')) == self.dimension
        except Exception as e:
            logger.error(f'Ollama Embed health check failed: {e}')
            return False
