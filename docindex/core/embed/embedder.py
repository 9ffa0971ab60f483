import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional
import httpx
from sentence_transformers import SentenceTransformer
from docindex.config.settings import EmbeddingConfig, settings
from docindex.core.errors import EmbeddingError
from docindex.core.retry import retry_async

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    @abstractmethod
    async def embed(self, texts: List[str]) -> List[List[float]]:
        pass


class SentenceTransformerEmbedder(EmbeddingProvider):
    """
    Local embeddings with sentence-transformers.
    - Singleton-style model loading to save memory.
    - Encoding runs in a worker thread so the event loop keeps serving.
    """

    _model = None

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or settings.embedding
        self._load_model()

    def _load_model(self):
        """Loads the sentence-transformer model onto CPU."""
        if SentenceTransformerEmbedder._model is None:
            logger.info(f"Loading embedding model: {self.config.model_name}...")
            SentenceTransformerEmbedder._model = SentenceTransformer(self.config.model_name, device="cpu")
        self.model = SentenceTransformerEmbedder._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        # BGE models work best with normalize_embeddings=True for cosine similarity
        embeddings = self.model.encode(
            texts,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            normalize_embeddings=self.config.normalise
        )
        return [e.tolist() for e in embeddings]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)


class ApiEmbedder(EmbeddingProvider):
    """OpenAI-compatible /embeddings endpoint."""

    def __init__(self,
                 config: Optional[EmbeddingConfig] = None,
                 api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or settings.embedding
        self.api_key = api_key if api_key is not None else settings.embedding_api_key
        self.url = f"{self.config.api_base_url.rstrip('/')}/embeddings"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "Content-Type": "application/json"
        }
        self.transport = transport

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        payload = {"model": self.config.api_model, "input": texts, "dimensions": self.config.vector_dim}

        async def call() -> List[List[float]]:
            async with httpx.AsyncClient(timeout=settings.llm.timeout, transport=self.transport) as client:
                response = await client.post(self.url, headers=self.headers, json=payload)
                response.raise_for_status()
                data = response.json()["data"]
                # The API may return items out of order; "index" is authoritative
                data = sorted(data, key=lambda d: d.get("index", 0))
                return [d["embedding"] for d in data]

        try:
            return await retry_async(
                call,
                tag="embeddings",
                max_retries=settings.llm.max_retries,
                base_delay=settings.llm.base_delay,
            )
        except (httpx.HTTPError, KeyError) as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e


def build_embedder(config: Optional[EmbeddingConfig] = None) -> EmbeddingProvider:
    config = config or settings.embedding
    if config.provider == "api":
        return ApiEmbedder(config)
    return SentenceTransformerEmbedder(config)
