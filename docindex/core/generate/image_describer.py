import base64
import logging
from docindex.core.generate.llm_client import LLMClient
from docindex.core.generate.prompt_builder import PromptBuilder
from docindex.models.layout import ImageDescription

logger = logging.getLogger(__name__)


class ImageDescriber:
    """Structured description of a standalone uploaded image."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def describe(self, data: bytes) -> ImageDescription:
        encoded = base64.b64encode(data).decode("ascii")
        return await self.llm.generate_structured(
            system_prompt=PromptBuilder.IMAGE_DESCRIPTION_PROMPT,
            prompt="Describe the image",
            schema=ImageDescription,
            images=[encoded],
        )
