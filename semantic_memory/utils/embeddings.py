"""
Embedding provider selection.
"""

from typing import List, Protocol

from .config import BEDROCK, EMBEDDING_PROVIDERS, OLLAMA, AppConfig, ConfigurationError
from .logging_config import get_logger

logger = get_logger(__name__)


class Embedder(Protocol):
    """Turns text into a vector of ``dimension`` floats."""
    dimension: int

    def embed_document(self, text: str) -> List[float]:
        ...

    def embed_query(self, text: str) -> List[float]:
        ...

    def health_check(self) -> bool:
        ...


def create_embedder(config: AppConfig) -> Embedder:
    """Create the embedding provider named by ``config.embedding.provider``.

    Raises:
        ConfigurationError: If the provider is unknown
    """
    provider = config.embedding.provider
    logger.info(f'Using {provider} embeddings (dim={config.embedding.dimension})')
    if provider == BEDROCK:
        from .bedrock_embed import BedrockEmbed
        return BedrockEmbed(config.embedding.bedrock)
    if provider == OLLAMA:
        from .ollama_embed import OllamaEmbed
        return OllamaEmbed(config.embedding.ollama)
    raise ConfigurationError(f"Unknown embedding provider '{provider}'; expected one of: {', '.join(EMBEDDING_PROVIDERS)}")
