import logging
from typing import List, Optional, Tuple
from docindex.config.settings import NodeConfig, settings
from docindex.core.synthesize.sections import node_id
from docindex.core.tokenizer import Tokenizer
from docindex.models.node import Node

logger = logging.getLogger(__name__)


class NodeSplitter:
    """
    Splits nodes above the token ceiling into overlapping windows.
    - Sub-nodes keep the parent's index, heading, page and leaves.
    - Sub-nodes replace the parent in place, so document order is preserved.
    """

    def __init__(self, tokenizer: Tokenizer, config: Optional[NodeConfig] = None):
        self.tokenizer = tokenizer
        self.config = config or settings.nodes

    def split(self, document_id: str, nodes: List[Node]) -> List[Node]:
        out: List[Node] = []
        for node in nodes:
            if node.tokens <= self.config.max_tokens_per_node:
                out.append(node)
                continue
            parts = self.split_node(document_id, node)
            logger.info(f"[{document_id}] Node {node.index} ({node.tokens} tokens) split into {len(parts)}")
            out.extend(parts)
        return out

    def split_node(self, document_id: str, node: Node) -> List[Node]:
        tokens = self.tokenizer.encode(node.content)
        ranges = self.get_token_ranges(len(tokens), self.config.max_tokens_per_node, self.config.overlap_tokens)

        return [
            node.model_copy(update={
                "id": node_id(document_id, node.index, segment),
                "content": self.tokenizer.decode(tokens[start:end]),
                "tokens": end - start,
                "embedding": None,
            })
            for segment, (start, end) in enumerate(ranges)
        ]

    @staticmethod
    def get_token_ranges(total_tokens: int, size: int, overlap: int) -> List[Tuple[int, int]]:
        """Token index ranges (start, end); the last window ends at total_tokens."""
        size = max(1, size)
        step = max(1, size - overlap)
        ranges = []
        s = 0
        while s < total_tokens:
            e = min(s + size, total_tokens)
            ranges.append((s, e))
            if e >= total_tokens:
                break
            s += step
        return ranges
