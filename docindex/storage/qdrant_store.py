import logging
from typing import Any, Dict, List, Optional
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as rest
from docindex.config.settings import QdrantConfig, settings
from docindex.models.node import DocumentChunk
from docindex.storage.base import SearchIndex

logger = logging.getLogger(__name__)

KEYWORD_FIELDS = ["document_id", "user_id"]


def build_filter(filters: Dict[str, Any]) -> rest.Filter:
    must_clauses = []
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, list):
            must_clauses.append(rest.FieldCondition(key=key, match=rest.MatchAny(any=value)))
        else:
            must_clauses.append(rest.FieldCondition(key=key, match=rest.MatchValue(value=value)))
    return rest.Filter(must=must_clauses)


class QdrantNodeIndex(SearchIndex):
    """
    Implements SearchIndex on Qdrant.
    - Cosine vectors, one point per node, point id = node id.
    - Keyword indexes on document_id/user_id and a full-text index on node_content.
    """

    def __init__(self,
                 config: Optional[QdrantConfig] = None,
                 client: Optional[AsyncQdrantClient] = None,
                 vector_dim: Optional[int] = None):
        self.config = config or settings.qdrant
        self.vector_dim = vector_dim or settings.embedding.vector_dim
        if client is None:
            if self.config.mode == "cloud":
                client = AsyncQdrantClient(url=self.config.cloud_url, api_key=settings.qdrant_api_key or None)
            elif self.config.mode == "memory":
                client = AsyncQdrantClient(location=":memory:")
            else:
                client = AsyncQdrantClient(path=self.config.local_path)
        self.client = client

    async def init(self) -> None:
        if await self.client.collection_exists(self.config.collection_name):
            return

        logger.info(f"Creating Qdrant collection: {self.config.collection_name}")
        await self.client.create_collection(
            collection_name=self.config.collection_name,
            vectors_config=rest.VectorParams(
                size=self.vector_dim,
                distance=rest.Distance.COSINE
            ),
            hnsw_config=rest.HnswConfigDiff(
                m=self.config.hnsw_m,
                ef_construct=self.config.hnsw_ef_construct
            )
        )
        # Payload indexes for filtering by owner/document
        for field in KEYWORD_FIELDS:
            await self.client.create_payload_index(
                collection_name=self.config.collection_name,
                field_name=field,
                field_schema=rest.PayloadSchemaType.KEYWORD
            )
        await self.client.create_payload_index(
            collection_name=self.config.collection_name,
            field_name="node_content",
            field_schema=rest.TextIndexParams(
                type=rest.TextIndexType.TEXT,
                tokenizer=rest.TokenizerType.WORD,
                lowercase=True,
            )
        )

    async def close(self) -> None:
        await self.client.close()

    async def upsert(self, chunks: List[DocumentChunk]) -> int:
        points = [
            rest.PointStruct(
                id=chunk.id,
                vector=chunk.embedding,
                payload=chunk.model_dump(exclude={"id", "embedding"})
            )
            for chunk in chunks
        ]

        batch_size = max(1, self.config.upsert_batch_size)
        for start in range(0, len(points), batch_size):
            await self.client.upsert(
                collection_name=self.config.collection_name,
                points=points[start:start + batch_size]
            )
        return len(points)

    async def remove(self, filters: Dict[str, Any]) -> None:
        query_filter = build_filter(filters)
        if not query_filter.must:
            # An empty filter would match every point in the collection
            raise ValueError("remove() requires at least one filter")

        await self.client.delete(
            collection_name=self.config.collection_name,
            points_selector=rest.FilterSelector(filter=query_filter)
        )
