import asyncio
import base64
import logging
import struct
from typing import Dict, List, Optional
from docindex.config.settings import FigureConfig, settings
from docindex.core.generate.llm_client import LLMClient
from docindex.core.generate.prompt_builder import PromptBuilder
from docindex.models.layout import (
    AnalyzeResult, BoundingBox, FigureDescription, LayoutFigure, PixelDimensions,
    PositionPercentage, ProcessedFigure,
)
from docindex.storage.base import ObjectStore

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
# JPEG start-of-frame markers that carry the image size (excludes DHT/JPG/DAC)
JPEG_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}


def read_image_dimensions(data: bytes) -> PixelDimensions:
    """Width/height from a PNG IHDR or JPEG SOF header; (0, 0) when unreadable."""
    if len(data) >= 24 and data[:8] == PNG_SIGNATURE:
        width, height = struct.unpack(">II", data[16:24])
        return PixelDimensions(width=width, height=height)

    if len(data) >= 4 and data[:2] == b"\xff\xd8":
        i = 2
        while i + 9 <= len(data):
            if data[i] != 0xFF:
                i += 1
                continue
            marker = data[i + 1]
            if marker == 0xFF:
                i += 1
                continue
            if marker in (0xD8, 0x01) or 0xD0 <= marker <= 0xD7:
                i += 2
                continue
            segment_length = struct.unpack(">H", data[i + 2:i + 4])[0]
            if marker in JPEG_SOF_MARKERS:
                height, width = struct.unpack(">HH", data[i + 5:i + 9])
                return PixelDimensions(width=width, height=height)
            i += 2 + segment_length

    return PixelDimensions()


def polygon_to_bounding_box(polygon: List[float]) -> Optional[BoundingBox]:
    if len(polygon) < 2:
        return None
    xs = polygon[0::2]
    ys = polygon[1::2]
    return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class FigureReviewer:
    """
    Decides which extracted figures are worth describing and describes them.
    - Small figures (either size rule) are skipped.
    - Header/footer position is recorded but does not exclude a figure.
    - A failure on one figure marks it unprocessed instead of failing the document.
    """

    def __init__(self,
                 store: ObjectStore,
                 llm: LLMClient,
                 config: Optional[FigureConfig] = None,
                 container: Optional[str] = None):
        self.store = store
        self.llm = llm
        self.config = config or settings.figures
        self.container = container or settings.storage.container

    async def review(self, document_id: str, result: AnalyzeResult) -> List[ProcessedFigure]:
        if not result.figures:
            return []

        page_sizes = self._page_dimensions(result)
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def bounded(figure: LayoutFigure) -> ProcessedFigure:
            async with semaphore:
                return await self.review_figure(document_id, figure, page_sizes)

        # gather keeps input order
        processed = await asyncio.gather(*(bounded(f) for f in result.figures))
        described = sum(1 for f in processed if f.process)
        logger.info(f"[{document_id}] Described {described}/{len(processed)} figures")
        return list(processed)

    def _page_dimensions(self, result: AnalyzeResult) -> Dict[int, tuple[float, float]]:
        sizes = {}
        for page in result.pages:
            width = page.width or self.config.default_page_width
            height = page.height or self.config.default_page_height
            sizes[page.page_number] = (width, height)
        return sizes

    def is_small(self, dimensions: PixelDimensions) -> bool:
        c = self.config
        rule_1 = dimensions.width < c.small_width_1 and dimensions.height < c.small_height_1
        rule_2 = dimensions.width < c.small_width_2 and dimensions.height < c.small_height_2
        return rule_1 or rule_2

    def should_process(self, is_small: bool) -> bool:
        # Header/footer figures are still described unless they are also small
        return not is_small

    async def review_figure(self,
                            document_id: str,
                            figure: LayoutFigure,
                            page_sizes: Dict[int, tuple[float, float]]) -> ProcessedFigure:
        fields = {
            "id": figure.id,
            "bounding_regions": figure.bounding_regions,
            "spans": figure.spans,
        }
        try:
            figure_bytes = await self.store.download(f"{document_id}/figures/{figure.id}.png", self.container)
            if figure_bytes is None:
                raise FileNotFoundError(f"Figure {figure.id} image not found in storage")

            dimensions = read_image_dimensions(figure_bytes)
            is_small = self.is_small(dimensions)
            fields.update(dimensions_pixels=dimensions, is_small=is_small)

            if figure.bounding_regions:
                region = figure.bounding_regions[0]
                fields["page_number"] = region.page_number
                width, height = page_sizes.get(
                    region.page_number,
                    (self.config.default_page_width, self.config.default_page_height),
                )
                box = polygon_to_bounding_box(region.polygon)
                if box is not None and height > 0:
                    position = PositionPercentage(
                        top_percent=box.y / height,
                        bottom_percent=(box.y + box.height) / height,
                    )
                    fields.update(
                        bounding_box=box,
                        position_percentage=position,
                        is_header=position.top_percent <= self.config.header_threshold,
                        is_footer=position.bottom_percent >= self.config.footer_threshold,
                    )

            process = self.should_process(is_small)
            if process:
                page_number = fields.get("page_number", 0)
                page_bytes = await self.store.download(f"{document_id}/previews/{page_number}.jpg", self.container)
                images = [to_base64(figure_bytes)]
                if page_bytes:
                    images.append(to_base64(page_bytes))

                description = await self.describe(images)
                fields.update(
                    description=description.description,
                    keywords=description.keywords,
                    classification=description.classification,
                    ocr_text=description.ocr_text,
                )
            fields["process"] = process

        except Exception as e:
            logger.warning(f"[{document_id}] Figure {figure.id} not processed: {e}")
            fields["process"] = False

        return ProcessedFigure(**fields)

    async def describe(self, images: List[str]) -> FigureDescription:
        return await self.llm.generate_structured(
            system_prompt=PromptBuilder.FIGURE_DESCRIPTION_PROMPT,
            prompt="Describe the figure",
            schema=FigureDescription,
            images=images,
        )
