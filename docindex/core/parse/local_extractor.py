import asyncio
import io
import logging
import re
import uuid
import zipfile
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple
import docx
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
import fitz  # PyMuPDF
import pandas as pd
import pdfplumber
from docindex.config.settings import ExtractionConfig, settings
from docindex.core.errors import ExtractionError
from docindex.core.parse.base import LayoutExtractor
from docindex.models.document import file_extension
from docindex.models.layout import (
    AnalyzeResult, BoundingRegion, DocumentSpan, LayoutFigure, LayoutPage,
    LayoutParagraph, LayoutTable, LayoutTableCell,
)

logger = logging.getLogger(__name__)

PAGE_NUMBER_PATTERN = re.compile(r"(page\s*)?\d+(\s*(of|/)\s*\d+)?", re.IGNORECASE)


def bbox_to_polygon(bbox: List[float]) -> List[float]:
    x0, y0, x1, y1 = bbox
    return [x0, y0, x1, y0, x1, y1, x0, y1]


def is_overlap(bbox1: List[float], bbox2: List[float]) -> bool:
    """bbox format: [x0, y0, x1, y1]; fitz and pdfplumber both measure y from the top."""
    return not (bbox1[2] < bbox2[0] or
                bbox1[0] > bbox2[2] or
                bbox1[3] < bbox2[1] or
                bbox1[1] > bbox2[3])


class _ContentBuilder:
    """Accumulates the flat document text and hands out spans into it."""

    def __init__(self):
        self.parts: List[str] = []
        self.offset = 0

    def add(self, text: str) -> DocumentSpan:
        span = DocumentSpan(offset=self.offset, length=len(text))
        self.parts.append(text + "\n")
        self.offset += len(text) + 1
        return span

    @property
    def content(self) -> str:
        return "".join(self.parts)


class LocalLayoutExtractor(LayoutExtractor):
    """
    Offline layout extraction producing the same AnalyzeResult shape as the hosted service.
    PDF: two passes
      Pass 1 (PyMuPDF): text blocks, font metrics, repeated headers/footers, embedded images.
      Pass 2 (pdfplumber): tables with cells.
    DOCX: python-docx paragraphs (styles become roles) and tables.
    TXT/MD: blank-line paragraphs, '#' lines become headings.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or settings.extraction
        # result_id -> figure_id -> png bytes; held until downloaded
        self._figures: Dict[str, Dict[str, bytes]] = {}

    async def extract(self, data: bytes, file_name: str) -> AnalyzeResult:
        extension = file_extension(file_name)
        logger.info(f"Extracting layout from {file_name} ({extension})")

        if extension == "pdf":
            result, figures = await asyncio.to_thread(self.parse_pdf, data)
            self._figures[result.result_id] = figures
        elif extension == "docx":
            result = await asyncio.to_thread(self.parse_docx, data)
        elif extension in ("txt", "md"):
            result = self.parse_text(data.decode("utf-8", errors="replace"))
        else:
            raise ExtractionError(f"Local extraction does not support .{extension} files")

        logger.info(
            f"Extracted {file_name}: {len(result.pages)} pages, {len(result.paragraphs)} paragraphs, "
            f"{len(result.tables)} tables, {len(result.figures)} figures"
        )
        return result

    async def download_figure(self, result: AnalyzeResult, figure_id: str) -> Optional[bytes]:
        figures = self._figures.get(result.result_id, {})
        data = figures.pop(figure_id, None)
        if not figures:
            self._figures.pop(result.result_id, None)
        return data

    # PDF

    def parse_pdf(self, data: bytes) -> Tuple[AnalyzeResult, Dict[str, bytes]]:
        try:
            raw_blocks, pages, figure_blocks, font_stats = self._extract_raw_blocks(data)
            tables_per_page = self._extract_tables(data)
        except (RuntimeError, ValueError) as e:
            raise ExtractionError(f"Could not read PDF: {e}") from e

        suppress = self._identify_repetitive_blocks(raw_blocks)
        page_heights = {p.page_number: p.height or 0 for p in pages}

        builder = _ContentBuilder()
        paragraphs: List[LayoutParagraph] = []
        paragraph_boxes: List[Tuple[int, List[float]]] = []

        raw_blocks.sort(key=lambda b: (b["page_number"], b["bbox"][1]))
        for b in raw_blocks:
            role = self._role_for(b, suppress, font_stats, page_heights.get(b["page_number"], 0))
            span = builder.add(b["text"])
            paragraphs.append(LayoutParagraph(
                role=role,
                content=b["text"],
                bounding_regions=[BoundingRegion(page_number=b["page_number"], polygon=bbox_to_polygon(b["bbox"]))],
                spans=[span],
            ))
            paragraph_boxes.append((b["page_number"], b["bbox"]))

        tables: List[LayoutTable] = []
        for page_number, page_tables in sorted(tables_per_page.items()):
            for t in page_tables:
                # A table covers the text blocks its box overlaps
                spans = [
                    paragraphs[i].spans[0]
                    for i, (p, box) in enumerate(paragraph_boxes)
                    if p == page_number and is_overlap(box, t["bbox"])
                ]
                tables.append(LayoutTable(
                    row_count=t["row_count"],
                    column_count=t["column_count"],
                    cells=t["cells"],
                    bounding_regions=[BoundingRegion(page_number=page_number, polygon=bbox_to_polygon(t["bbox"]))],
                    spans=spans,
                ))

        figures: List[LayoutFigure] = []
        figure_bytes: Dict[str, bytes] = {}
        for f in figure_blocks:
            figures.append(LayoutFigure(
                id=f["id"],
                bounding_regions=[BoundingRegion(page_number=f["page_number"], polygon=bbox_to_polygon(f["bbox"]))],
            ))
            figure_bytes[f["id"]] = f["image"]

        result = AnalyzeResult(
            content=builder.content,
            pages=pages,
            paragraphs=paragraphs,
            tables=tables,
            figures=figures,
            result_id=uuid.uuid4().hex,
        )
        return result, figure_bytes

    def _extract_raw_blocks(self, data: bytes) -> Tuple[List[Dict[str, Any]], List[LayoutPage], List[Dict[str, Any]], Dict[str, float]]:
        """
        Extracts text blocks with font info, page sizes and embedded images.
        Also computes global font statistics for heading detection.
        """
        doc = fitz.open(stream=data, filetype="pdf")
        blocks = []
        pages = []
        images = []
        all_font_sizes = []

        try:
            for page_index, page in enumerate(doc):
                page_number = page_index + 1
                pages.append(LayoutPage(
                    page_number=page_number,
                    width=page.rect.width,
                    height=page.rect.height,
                    unit="point",
                ))
                page_dict = page.get_text("dict")
                image_count = 0
                for b in page_dict["blocks"]:
                    if b["type"] == 1:  # Image block
                        image_count += 1
                        images.append({
                            "id": f"{page_number}.{image_count}",
                            "page_number": page_number,
                            "bbox": list(b["bbox"]),
                            "image": self._to_png(b.get("image", b"")),
                        })
                        continue

                    block_text = ""
                    block_font_sizes = []
                    for line in b.get("lines", []):
                        for span in line["spans"]:
                            block_text += span["text"]
                            block_font_sizes.append(span["size"])
                            all_font_sizes.append(span["size"])
                        block_text += " "

                    text = block_text.strip()
                    if not text:
                        continue
                    blocks.append({
                        "text": text,
                        "page_number": page_number,
                        "bbox": list(b["bbox"]),  # [x0, y0, x1, y1]
                        "font_size": max(block_font_sizes) if block_font_sizes else 0,
                    })
        finally:
            doc.close()

        font_stats = {
            "median_size": float(pd.Series(all_font_sizes).median()) if all_font_sizes else 0.0,
            "max_size": max(all_font_sizes) if all_font_sizes else 0.0,
        }
        return blocks, pages, images, font_stats

    def _to_png(self, image: bytes) -> bytes:
        if not image:
            return image
        try:
            pix = fitz.Pixmap(image)
            if pix.n - pix.alpha >= 4:  # CMYK
                pix = fitz.Pixmap(fitz.csRGB, pix)
            return pix.tobytes("png")
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Keeping embedded image in its original format: {e}")
            return image

    def _identify_repetitive_blocks(self, blocks: List[Dict[str, Any]]) -> set:
        """
        Detects text that appears at the same Y-position on multiple pages.
        Those blocks become page headers/footers.
        """
        pos_text_counts = Counter()
        for b in blocks:
            pos_hash = (round(b["bbox"][1], 0), b["text"].strip())
            pos_text_counts[pos_hash] += 1

        return {pos_hash for pos_hash, count in pos_text_counts.items()
                if count >= self.config.header_footer_threshold}

    def _in_margin_band(self, block: Dict[str, Any], page_height: float) -> bool:
        if page_height <= 0:
            return True
        band = page_height * self.config.page_number_band
        return block["bbox"][1] <= band or block["bbox"][3] >= page_height - band

    def _role_for(self, block: Dict[str, Any], suppress: set, font_stats: Dict[str, float], page_height: float) -> Optional[str]:
        text = block["text"].strip()
        if PAGE_NUMBER_PATTERN.fullmatch(text) and self._in_margin_band(block, page_height):
            return "pageNumber"

        if (round(block["bbox"][1], 0), text) in suppress:
            in_top_half = page_height <= 0 or block["bbox"][1] < page_height / 2
            return "pageHeader" if in_top_half else "pageFooter"

        median = font_stats["median_size"]
        if median and block["font_size"] > median * self.config.title_font_ratio:
            return "title"
        if median and block["font_size"] > median * self.config.heading_font_ratio:
            return "sectionHeading"
        return None

    def _extract_tables(self, data: bytes) -> Dict[int, List[Dict[str, Any]]]:
        """
        Uses pdfplumber to detect tables and their cells.
        Returns a dict mapping page_number -> list of table dicts.
        """
        tables_per_page = {}
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for i, page in enumerate(pdf.pages):
                page_tables = []
                for table in page.find_tables():
                    table_data = table.extract()
                    if not table_data:
                        continue
                    df = pd.DataFrame(table_data).fillna("")
                    cells = [
                        LayoutTableCell(
                            kind="columnHeader" if r == 0 else "content",
                            row_index=r,
                            column_index=c,
                            content=str(value).strip(),
                        )
                        for r, row in enumerate(df.itertuples(index=False))
                        for c, value in enumerate(row)
                    ]
                    page_tables.append({
                        "bbox": list(table.bbox),  # [x0, top, x1, bottom]
                        "row_count": df.shape[0],
                        "column_count": df.shape[1],
                        "cells": cells,
                    })
                tables_per_page[i + 1] = page_tables
        return tables_per_page

    # DOCX

    def parse_docx(self, data: bytes) -> AnalyzeResult:
        try:
            document = docx.Document(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError) as e:
            raise ExtractionError(f"Could not read DOCX: {e}") from e

        builder = _ContentBuilder()
        paragraphs: List[LayoutParagraph] = []
        tables: List[LayoutTable] = []

        # No pagination in DOCX: everything is page 1, and y is the reading position
        for position, item in enumerate(document.iter_inner_content()):
            region = BoundingRegion(page_number=1, polygon=bbox_to_polygon([0, position, 1, position + 1]))

            if isinstance(item, Table):
                cells, rows_text = self._docx_table_cells(item)
                text = "\n".join(" | ".join(row) for row in rows_text)
                tables.append(LayoutTable(
                    row_count=len(item.rows),
                    column_count=len(item.columns),
                    cells=cells,
                    bounding_regions=[region],
                    spans=[builder.add(text)],
                ))
                continue

            text = item.text.strip()
            if not text:
                continue
            paragraphs.append(LayoutParagraph(
                role=self._docx_role(item.style.name if item.style is not None else ""),
                content=text,
                bounding_regions=[region],
                spans=[builder.add(text)],
            ))

        return AnalyzeResult(
            content=builder.content,
            pages=[LayoutPage(page_number=1)],
            paragraphs=paragraphs,
            tables=tables,
            result_id=uuid.uuid4().hex,
        )

    def _docx_table_cells(self, table: Table) -> Tuple[List[LayoutTableCell], List[List[str]]]:
        """
        python-docx repeats a merged cell for every grid slot it covers.
        Each underlying <w:tc> becomes one cell, with the repeats counted as spans.
        """
        cells: List[LayoutTableCell] = []
        rows_text: List[List[str]] = []
        seen: Dict[Any, LayoutTableCell] = {}
        last_row: Dict[Any, int] = {}

        for r, row in enumerate(table.rows):
            row_text = []
            for c, cell in enumerate(row.cells):
                tc = cell._tc
                if tc in seen:
                    origin = seen[tc]
                    if origin.row_index == r:
                        origin.column_span = (origin.column_span or 1) + 1
                    elif last_row[tc] != r:
                        origin.row_span = (origin.row_span or 1) + 1
                        last_row[tc] = r
                    continue

                content = cell.text.strip()
                seen[tc] = LayoutTableCell(
                    kind="columnHeader" if r == 0 else "content",
                    row_index=r,
                    column_index=c,
                    content=content,
                )
                last_row[tc] = r
                cells.append(seen[tc])
                row_text.append(content)
            rows_text.append(row_text)
        return cells, rows_text

    def _docx_role(self, style_name: str) -> Optional[str]:
        if style_name == "Title":
            return "title"
        if style_name.startswith("Heading"):
            return "sectionHeading"
        return None

    # Plain text / markdown

    def parse_text(self, text: str) -> AnalyzeResult:
        builder = _ContentBuilder()
        paragraphs: List[LayoutParagraph] = []

        blocks = [b.strip() for b in re.split(r"\n\s*\n", text) if b.strip()]
        position = 0
        for block in blocks:
            lines = block.splitlines()
            body: List[str] = []
            for line in lines + [None]:
                heading = line is not None and line.lstrip().startswith("#")
                if (heading or line is None) and body:
                    paragraphs.append(self._text_paragraph(builder, " ".join(body), None, position))
                    position += 1
                    body = []
                if heading:
                    marker = line.lstrip()
                    title = marker.lstrip("#").strip()
                    level = len(marker) - len(marker.lstrip("#"))
                    if title:
                        role = "title" if level == 1 else "sectionHeading"
                        paragraphs.append(self._text_paragraph(builder, title, role, position))
                        position += 1
                elif line is not None and line.strip():
                    body.append(line.strip())

        return AnalyzeResult(
            content=builder.content,
            pages=[LayoutPage(page_number=1)],
            paragraphs=paragraphs,
            result_id=uuid.uuid4().hex,
        )

    def _text_paragraph(self, builder: _ContentBuilder, text: str, role: Optional[str], position: int) -> LayoutParagraph:
        return LayoutParagraph(
            role=role,
            content=text,
            bounding_regions=[BoundingRegion(page_number=1, polygon=bbox_to_polygon([0, position, 1, position + 1]))],
            spans=[builder.add(text)],
        )
