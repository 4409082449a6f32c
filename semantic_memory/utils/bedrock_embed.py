"""
Amazon Bedrock embedding provider with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

COHERE_DIMENSION = 1024


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client for Titan and Cohere embedding models."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        if 'cohere' in self.model_id.lower() and self.dimension != COHERE_DIMENSION:
            raise BedrockEmbedError(f'Cohere models only support {COHERE_DIMENSION} dimensions, got {self.dimension}')

        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}') from e

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            logger.warning(f'Empty text provided for {input_type} embedding')
            return [0.0] * self.dimension

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension})
            embedding = response.get('embedding')
        elif 'cohere' in model:
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or [None]
            embedding = embeddings[0]
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        if not embedding:
            raise BedrockEmbedError(f'Bedrock returned no embedding for model {self.model_id}')
        return [float(v) for v in embedding]

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for stored text (entity names, fact content).

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.embed_document('test')) == self.dimension
        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
