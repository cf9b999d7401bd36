"""
Embedding generator - generate vector representations for memories

Supported providers:
1. OpenAI Embedding API
2. local model (through Sentence Transformers)
3. dummy: deterministic hash-seeded vectors, for tests and offline runs
"""

from typing import Any, Dict, List, Optional
import asyncio
import hashlib

import numpy as np
from loguru import logger

from mazemind.config import EmbeddingConfig
from mazemind.errors import ConfigurationError

TAG = __name__


class EmbeddingGenerator:
    """embedding service: async embed(text) -> List[float]"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        initialize embedding generator

        Args:
            config: config dict (keys of EmbeddingConfig):
                - provider: "openai", "local", "dummy"
                - model: model name
                - api_key: API key (OpenAI)
                - base_url: API base URL (optional)
                - dimension: vector dimension (dummy provider)
        """
        self.config = EmbeddingConfig(**(config or {}))
        self.config.validate()
        self.provider = self.config.provider
        self.model = self.config.model
        self.dimension = self.config.dimension

        self.client = None
        self._initialize_client()

        logger.bind(tag=TAG).info(
            f"EmbeddingGenerator initialized with provider={self.provider}, "
            f"model={self.model}, dimension={self.dimension}"
        )

    def _initialize_client(self):
        """initialize embedding client"""
        if self.provider == "openai":
            from openai import AsyncOpenAI
            self.client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
            )
            logger.bind(tag=TAG).info("OpenAI embedding client initialized")

        elif self.provider == "local":
            from sentence_transformers import SentenceTransformer
            self.client = SentenceTransformer(self.model)
            logger.bind(tag=TAG).info(f"Local sentence-transformer model '{self.model}' loaded")

        elif self.provider == "dummy":
            logger.bind(tag=TAG).warning("Using dummy embeddings (hash-seeded vectors)")

        else:
            raise ConfigurationError(f"unknown embedding provider '{self.provider}'")

    async def embed(self, text: str) -> List[float]:
        """
        generate a vector representation for text

        Errors of the underlying provider propagate; callers decide how to
        degrade.
        """
        if not text or not text.strip():
            logger.bind(tag=TAG).warning("Empty text provided for embedding, returning zero vector")
            return [0.0] * self.dimension

        if self.provider == "openai":
            return await self._generate_openai_embedding(text)
        elif self.provider == "local":
            return await self._generate_local_embedding(text)
        return self._generate_dummy_embedding(text)

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """batch generate vector representations"""
        if not texts:
            return []
        if self.provider == "openai":
            return await self._generate_openai_embeddings_batch(texts)
        elif self.provider == "local":
            return await self._generate_local_embeddings_batch(texts)
        return [self._generate_dummy_embedding(text) for text in texts]

    async def _generate_openai_embedding(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
        )
        return response.data[0].embedding

    async def _generate_openai_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=texts,
        )
        return [item.embedding for item in response.data]

    async def _generate_local_embedding(self, text: str) -> List[float]:
        # SentenceTransformer.encode is synchronous, run it in the executor
        loop = asyncio.get_running_loop()
        embedding = await loop.run_in_executor(None, self.client.encode, text)
        return embedding.tolist()

    async def _generate_local_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        loop = asyncio.get_running_loop()
        embeddings = await loop.run_in_executor(None, self.client.encode, texts)
        return [emb.tolist() for emb in embeddings]

    def _generate_dummy_embedding(self, text: str) -> List[float]:
        # text hash as seed, the same text always gets the same vector
        seed = int(hashlib.md5(text.encode()).hexdigest(), 16) % (2**32)
        rng = np.random.RandomState(seed)

        vec = rng.randn(self.dimension)
        vec = vec / np.linalg.norm(vec)

        return vec.tolist()
