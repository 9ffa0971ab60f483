import logging
from typing import List
from docindex.core.synthesize.sections import SectionGrouper
from docindex.core.synthesize.spans import SpanOverlapIndex
from docindex.core.synthesize.tables import TableRenderer
from docindex.core.tokenizer import Tokenizer
from docindex.models.layout import AnalyzeResult, BoundingRegion, ProcessedFigure, first_region
from docindex.models.node import DocumentElement, ElementKind, Node

logger = logging.getLogger(__name__)


def reading_order_key(element: DocumentElement) -> tuple[int, float]:
    region = first_region(element.bounding_regions)
    if region is None:
        return (0, 0.0)
    y = region.polygon[1] if len(region.polygon) > 1 else 0.0
    return (region.page_number or 0, y)


def _page_of(regions: List[BoundingRegion]) -> int:
    region = first_region(regions)
    return region.page_number if region else 1


class DocumentSynthesizer:
    """
    Turns a layout extraction result into heading-scoped nodes:
    1. Drop paragraphs whose spans fall inside a table
    2. Render tables as text + HTML
    3. Caption figures with their reviewed description
    4. Sort everything into reading order (page, then y)
    5. Group into sections
    """

    def __init__(self, tokenizer: Tokenizer):
        self.grouper = SectionGrouper(tokenizer)

    def collect_elements(self, result: AnalyzeResult, figures: List[ProcessedFigure]) -> List[DocumentElement]:
        table_spans = SpanOverlapIndex(span for table in result.tables for span in table.spans)
        renderer = TableRenderer()

        elements: List[DocumentElement] = []
        dropped = 0
        for paragraph in result.paragraphs:
            if table_spans.contains_any(paragraph.spans):
                dropped += 1
                continue
            elements.append(DocumentElement(
                kind=ElementKind.from_role(paragraph.role),
                role=paragraph.role or "paragraph",
                page_number=_page_of(paragraph.bounding_regions),
                content=paragraph.content,
                bounding_regions=paragraph.bounding_regions,
                spans=paragraph.spans,
            ))

        for table in result.tables:
            elements.append(DocumentElement(
                kind=ElementKind.table,
                role="table",
                page_number=_page_of(table.bounding_regions),
                content=renderer.to_text(table),
                html=renderer.to_html(table),
                bounding_regions=table.bounding_regions,
                spans=table.spans,
            ))

        for figure in figures:
            elements.append(DocumentElement(
                kind=ElementKind.figure,
                role="figure",
                page_number=figure.page_number or _page_of(figure.bounding_regions),
                content=figure.description or "",
                figure_id=figure.id,
                bounding_regions=figure.bounding_regions,
                spans=figure.spans,
            ))

        # sorted() is stable: ties keep paragraphs before tables before figures
        elements = sorted(elements, key=reading_order_key)
        if dropped:
            logger.debug(f"Dropped {dropped} paragraphs covered by tables")
        return [e for e in elements if e.kind != ElementKind.noise]

    def synthesize(self, document_id: str, result: AnalyzeResult, figures: List[ProcessedFigure]) -> List[Node]:
        elements = self.collect_elements(result, figures)
        return self.grouper.group(document_id, elements)
