import logging
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from docindex.config.settings import SummaryConfig, settings
from docindex.core.generate.llm_client import LLMClient
from docindex.core.generate.prompt_builder import PromptBuilder
from docindex.models.node import Node

logger = logging.getLogger(__name__)


class SummaryResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary: str


class SummaryReducer:
    """
    One bounded summary for a document of any length.
    - Node contents are packed greedily into token-bounded batches, in order.
    - The first batch is summarized; each later batch is folded into the running summary.
    """

    def __init__(self, llm: LLMClient, config: Optional[SummaryConfig] = None):
        self.llm = llm
        self.config = config or settings.summary

    def make_batches(self, nodes: List[Node]) -> List[str]:
        batches: List[List[str]] = []
        current: List[str] = []
        current_tokens = 0
        for node in nodes:
            if current and current_tokens + node.tokens > self.config.max_tokens_per_batch:
                batches.append(current)
                current, current_tokens = [], 0
            current.append(node.content)
            current_tokens += node.tokens
        if current:
            batches.append(current)
        return ["\n\n".join(batch) for batch in batches]

    async def summarize(self, document_id: str, nodes: List[Node]) -> str:
        batches = self.make_batches(nodes)
        if not batches:
            return ""

        logger.info(f"[{document_id}] Summarizing {len(nodes)} nodes in {len(batches)} batches")
        summary = await self.summarize_text(batches[0])
        for batch in batches[1:]:
            summary = await self.combine(summary, batch)

        return summary[:self.config.max_summary_chars]

    async def summarize_text(self, text: str) -> str:
        result = await self.llm.generate_structured(
            system_prompt=PromptBuilder.SUMMARY_PROMPT,
            prompt=PromptBuilder.build_summary_prompt(text),
            schema=SummaryResult,
        )
        return result.summary

    async def combine(self, previous_summary: str, new_content: str) -> str:
        result = await self.llm.generate_structured(
            system_prompt=PromptBuilder.COMBINE_PROMPT,
            prompt=PromptBuilder.build_combine_prompt(previous_summary, new_content),
            schema=SummaryResult,
        )
        # An empty combination keeps what we already had
        return result.summary or previous_summary
