import asyncio
import logging
from typing import List, Optional
import fitz  # PyMuPDF
from docindex.config.settings import PreviewConfig, settings
from docindex.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class PreviewRenderer:
    """Renders each PDF page to JPEG at {document_id}/previews/{page}.jpg."""

    def __init__(self, store: ObjectStore, config: Optional[PreviewConfig] = None, container: Optional[str] = None):
        self.store = store
        self.config = config or settings.previews
        self.container = container or settings.storage.container

    def render_pages(self, data: bytes) -> List[bytes]:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            return [
                page.get_pixmap(dpi=self.config.dpi).tobytes("jpg", jpg_quality=self.config.jpg_quality)
                for page in doc
            ]
        finally:
            doc.close()

    async def render(self, document_id: str, data: bytes) -> List[str]:
        """Uploads one preview per page and returns their keys in page order."""
        images = await asyncio.to_thread(self.render_pages, data)
        keys = []
        for page_number, image in enumerate(images, start=1):
            key = f"{document_id}/previews/{page_number}.jpg"
            await self.store.upload(image, key, self.container)
            keys.append(key)
        logger.info(f"[{document_id}] Rendered {len(keys)} page previews")
        return keys
