from abc import ABC, abstractmethod
from typing import Optional
from docindex.models.layout import AnalyzeResult

class LayoutExtractor(ABC):
    @abstractmethod
    async def extract(self, data: bytes, file_name: str) -> AnalyzeResult:
        pass

    @abstractmethod
    async def download_figure(self, result: AnalyzeResult, figure_id: str) -> Optional[bytes]:
        """Figure image bytes, or None when the extractor no longer has them."""
        pass
