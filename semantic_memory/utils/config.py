"""
Configuration management for storage layers, embedding providers and the MCP server.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

SQLITE = 'sqlite'
NEPTUNE = 'neptune'
STORAGE_PROVIDERS = (SQLITE, NEPTUNE)

BEDROCK = 'bedrock'
OLLAMA = 'ollama'
EMBEDDING_PROVIDERS = (BEDROCK, OLLAMA)

DEFAULT_EMBEDDING_DIMS = {BEDROCK: 1024, OLLAMA: 768}


class ConfigurationError(Exception):
    """Fatal startup error: inconsistent or unsupported configuration."""
    pass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class LayerConfig:
    """Configuration for one storage layer ("project" or "global")."""
    name: str
    provider: str
    db_path: str


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class OllamaEmbedConfig:
    """Configuration for a local Ollama embedding model."""
    url: str
    model: str
    dimension: int
    timeout: float


@dataclass
class EmbeddingConfig:
    """Embedding provider selection and the store-wide vector dimension."""
    provider: str
    dimension: int
    bedrock: BedrockEmbedConfig
    ollama: OllamaEmbedConfig


@dataclass
class NeptuneConfig:
    """Configuration for the Gremlin endpoint of the graph backend."""
    endpoint: str
    port: int
    region: str
    use_ssl: bool
    iam_auth: bool


@dataclass
class OpenSearchConfig:
    """Configuration for the k-NN index of the graph backend."""
    endpoint: str
    port: int
    region: str
    index_name: str
    service: str
    use_ssl: bool
    aws_auth: bool


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class TriggerConfig:
    """Extra trigger phrases appended to the tool descriptions."""
    store: Optional[str] = None
    search: Optional[str] = None
    graph: Optional[str] = None
    list: Optional[str] = None


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    project: LayerConfig
    embedding: EmbeddingConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    mcp: MCPConfig
    triggers: TriggerConfig = field(default_factory=TriggerConfig)
    global_layer: Optional[LayerConfig] = None

    @property
    def dual_mode(self) -> bool:
        return self.global_layer is not None

    def layers(self) -> List[LayerConfig]:
        """Configured layers, project first."""
        if self.global_layer is None:
            return [self.project]
        return [self.project, self.global_layer]


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    load_dotenv()

    environment = os.getenv('ENVIRONMENT', 'development')

    data_dir = Path(os.getenv('SEMANTIC_MEMORY_DIR', str(Path.home() / '.cache' / 'semantic-memory')))
    project = LayerConfig(name='project',
                          provider=os.getenv('STORAGE_PROVIDER', SQLITE).strip().lower(),
                          db_path=os.getenv('SEMANTIC_MEMORY_DB', str(data_dir / 'memory.db')))

    # Dual mode is enabled by pointing at a global memory directory
    global_layer = None
    global_dir = os.getenv('SEMANTIC_MEMORY_GLOBAL_DIR')
    if global_dir:
        global_layer = LayerConfig(name='global',
                                   provider=os.getenv('GLOBAL_STORAGE_PROVIDER', SQLITE).strip().lower(),
                                   db_path=os.getenv('SEMANTIC_MEMORY_GLOBAL_DB', str(Path(global_dir) / 'memory.db')))

    provider = os.getenv('EMBEDDING_PROVIDER', BEDROCK).strip().lower()
    dimension = int(os.getenv('EMBEDDING_DIM', str(DEFAULT_EMBEDDING_DIMS.get(provider, 1024))))

    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=dimension,
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    ollama_embed_config = OllamaEmbedConfig(url=os.getenv('OLLAMA_URL', 'http://localhost:11434'),
                                            model=os.getenv('OLLAMA_MODEL', 'nomic-embed-text'),
                                            dimension=dimension,
                                            timeout=float(os.getenv('OLLAMA_TIMEOUT', '60')))

    embedding_config = EmbeddingConfig(provider=provider,
                                       dimension=dimension,
                                       bedrock=bedrock_embed_config,
                                       ollama=ollama_embed_config)

    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   use_ssl=_env_bool('NEPTUNE_USE_SSL', True),
                                   iam_auth=_env_bool('NEPTUNE_IAM_AUTH', True))

    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'semantic_memory'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         use_ssl=_env_bool('OPENSEARCH_USE_SSL', True),
                                         aws_auth=_env_bool('OPENSEARCH_AWS_AUTH', True))

    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'stdio'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    trigger_config = TriggerConfig(store=os.getenv('MEMORY_TRIGGERS_STORE'),
                                   search=os.getenv('MEMORY_TRIGGERS_SEARCH'),
                                   graph=os.getenv('MEMORY_TRIGGERS_GRAPH'),
                                   list=os.getenv('MEMORY_TRIGGERS_LIST'))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     project=project,
                     embedding=embedding_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     mcp=mcp_config,
                     triggers=trigger_config,
                     global_layer=global_layer)
