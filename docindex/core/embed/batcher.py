import asyncio
import logging
from typing import List, Optional
from docindex.config.settings import EmbeddingConfig, settings
from docindex.core.embed.embedder import EmbeddingProvider
from docindex.core.errors import EmbeddingError
from docindex.models.node import Node

logger = logging.getLogger(__name__)


class EmbeddingBatcher:
    """
    Packs nodes into embedding requests under two limits at once:
    item count and summed tokens. Order is preserved.
    """

    def __init__(self, embedder: EmbeddingProvider, config: Optional[EmbeddingConfig] = None):
        self.embedder = embedder
        self.config = config or settings.embedding

    def pack(self, nodes: List[Node]) -> List[List[Node]]:
        max_items = self.config.max_items_per_batch
        max_tokens = self.config.max_tokens_per_batch

        batches: List[List[Node]] = []
        current: List[Node] = []
        current_tokens = 0

        for node in nodes:
            if node.tokens > max_tokens:
                logger.warning(
                    f"Node {node.id} has {node.tokens} tokens, above the batch limit of {max_tokens}; embedding it alone"
                )
                if current:
                    batches.append(current)
                batches.append([node])
                current, current_tokens = [], 0
                continue

            if current and (len(current) + 1 > max_items or current_tokens + node.tokens > max_tokens):
                batches.append(current)
                current, current_tokens = [], 0

            current.append(node)
            current_tokens += node.tokens

        if current:
            batches.append(current)
        return batches

    async def embed_batch(self, batch: List[Node]) -> List[Node]:
        vectors = await self.embedder.embed([n.content for n in batch])
        if len(vectors) != len(batch):
            raise EmbeddingError(f"Expected {len(batch)} embeddings, got {len(vectors)}")
        return [node.model_copy(update={"embedding": list(vector)}) for node, vector in zip(batch, vectors)]

    async def embed(self, document_id: str, nodes: List[Node]) -> List[Node]:
        batches = self.pack(nodes)
        logger.info(f"[{document_id}] Embedding {len(nodes)} nodes in {len(batches)} batches")

        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_batches))

        async def bounded(batch: List[Node]) -> List[Node]:
            async with semaphore:
                return await self.embed_batch(batch)

        results = await asyncio.gather(*(bounded(b) for b in batches))
        return [node for batch in results for node in batch]
