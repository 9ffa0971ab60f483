import struct
from typing import Any, Callable, Dict, List, Optional, Type
from docindex.core.embed.embedder import EmbeddingProvider
from docindex.core.generate.summarizer import SummaryResult
from docindex.core.parse.base import LayoutExtractor
from docindex.models.document import DocumentRecord, DocumentStatus, can_transition
from docindex.models.event_log import EventLog
from docindex.models.layout import (
    AnalyzeResult, BoundingRegion, DocumentSpan, FigureDescription, LayoutFigure,
    LayoutPage, LayoutParagraph, LayoutTable, LayoutTableCell,
)
from docindex.models.node import DocumentChunk, DocumentElement, ElementKind
from docindex.storage.base import DocumentRepository, EventLogRepository, SearchIndex


class WordTokenizer:
    """One token per whitespace-separated word; ids index a growing vocabulary."""

    def __init__(self):
        self.vocab: List[str] = []
        self.ids: Dict[str, int] = {}

    def _id(self, word: str) -> int:
        if word not in self.ids:
            self.ids[word] = len(self.vocab)
            self.vocab.append(word)
        return self.ids[word]

    def encode(self, text: str) -> List[int]:
        return [self._id(w) for w in text.split()]

    def decode(self, tokens: List[int]) -> str:
        return " ".join(self.vocab[t] for t in tokens)


class FakeLLM:
    """Answers structured requests per schema and records every call."""

    def __init__(self, fail_for: Optional[Callable[[str, List[str]], bool]] = None):
        self.calls: List[Dict[str, Any]] = []
        self.fail_for = fail_for

    async def generate_structured(self, system_prompt: str, prompt: str, schema: Type, images: Optional[List[str]] = None):
        self.calls.append({"system_prompt": system_prompt, "prompt": prompt, "schema": schema, "images": images or []})
        if self.fail_for and self.fail_for(prompt, images or []):
            raise RuntimeError("model unavailable")

        if schema is SummaryResult:
            return SummaryResult(summary=f"summary {len(self.calls)}")
        if issubclass(schema, FigureDescription):
            return schema(
                description=f"description {len(self.calls)}",
                keywords=["alpha", "beta"],
                classification="chart",
                ocr_text="",
            )
        raise AssertionError(f"Unexpected schema {schema}")


class FakeEmbedder(EmbeddingProvider):
    def __init__(self, drop_last: bool = False):
        self.calls: List[List[str]] = []
        self.drop_last = drop_last

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        vectors = [[float(len(t)), float(i)] for i, t in enumerate(texts)]
        return vectors[:-1] if self.drop_last else vectors


class FakeExtractor(LayoutExtractor):
    def __init__(self, result: AnalyzeResult, figures: Optional[Dict[str, bytes]] = None):
        self.result = result
        self.figures = figures or {}
        self.extract_calls = 0

    async def extract(self, data: bytes, file_name: str) -> AnalyzeResult:
        self.extract_calls += 1
        return self.result.model_copy(deep=True)

    async def download_figure(self, result: AnalyzeResult, figure_id: str) -> Optional[bytes]:
        return self.figures.get(figure_id)


class InMemorySearchIndex(SearchIndex):
    def __init__(self):
        self.points: Dict[str, DocumentChunk] = {}
        self.remove_calls: List[Dict[str, Any]] = []

    async def upsert(self, chunks: List[DocumentChunk]) -> int:
        for chunk in chunks:
            self.points[chunk.id] = chunk
        return len(chunks)

    async def remove(self, filters: Dict[str, Any]) -> None:
        self.remove_calls.append(filters)
        self.points = {
            k: v for k, v in self.points.items()
            if not all(getattr(v, key) == value for key, value in filters.items())
        }


class InMemoryRepository(DocumentRepository):
    def __init__(self):
        self.records: Dict[str, DocumentRecord] = {}

    async def init(self) -> None:
        pass

    async def create(self, record: DocumentRecord) -> DocumentRecord:
        self.records[record.id] = record
        return record

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        return self.records.get(document_id)

    async def list_for_user(self, user_id: str) -> List[DocumentRecord]:
        return [r for r in self.records.values() if r.user_id == user_id]

    async def count(self, status: DocumentStatus) -> int:
        return sum(1 for r in self.records.values() if r.status == status)

    async def claim_next(self) -> Optional[DocumentRecord]:
        for record in self.records.values():
            if record.status == DocumentStatus.pending:
                record.status = DocumentStatus.processing
                return record
        return None

    async def transition(self, document_id, expected, target, **values) -> bool:
        record = self.records[document_id]
        if not can_transition(expected, target) or record.status != expected:
            return False
        self.records[document_id] = record.model_copy(update={"status": target, **values})
        return True

    async def reset_processing(self) -> int:
        stale = [r for r in self.records.values() if r.status == DocumentStatus.processing]
        for r in stale:
            r.status = DocumentStatus.pending
        return len(stale)


class InMemoryEventLogRepository(EventLogRepository):
    def __init__(self):
        self.entries: List[EventLog] = []

    async def init(self) -> None:
        pass

    async def create(self, entry: EventLog) -> EventLog:
        entry = entry.model_copy(update={"id": len(self.entries) + 1})
        self.entries.append(entry)
        return entry

    async def list(self, level=None, group=None, keywords=None, offset=0, limit=50) -> List[EventLog]:
        matches = [
            e for e in reversed(self.entries)
            if (level is None or e.level == level)
            and (group is None or e.group == group)
            and (not keywords or any(w.lower() in e.message.lower() for w in keywords.split()))
        ]
        return matches[offset:offset + limit]


# Builders

def region(page: int, y: float, x: float = 50.0, height: float = 20.0, width: float = 400.0) -> BoundingRegion:
    return BoundingRegion(page_number=page, polygon=[x, y, x + width, y, x + width, y + height, x, y + height])


def paragraph(content: str, page: int, y: float, offset: int, role: Optional[str] = None) -> LayoutParagraph:
    return LayoutParagraph(
        role=role,
        content=content,
        bounding_regions=[region(page, y)],
        spans=[DocumentSpan(offset=offset, length=len(content))],
    )


def table(rows: List[List[str]], page: int, y: float, spans: List[DocumentSpan]) -> LayoutTable:
    cells = [
        LayoutTableCell(kind="columnHeader" if r == 0 else "content", row_index=r, column_index=c, content=value)
        for r, row in enumerate(rows)
        for c, value in enumerate(row)
    ]
    return LayoutTable(
        row_count=len(rows),
        column_count=max(len(r) for r in rows),
        cells=cells,
        bounding_regions=[region(page, y, height=100.0)],
        spans=spans,
    )


def figure(figure_id: str, page: int, y: float, height: float = 200.0) -> LayoutFigure:
    return LayoutFigure(id=figure_id, bounding_regions=[region(page, y, height=height)])


def element(kind: ElementKind, content: str, page: int = 1, figure_id: Optional[str] = None) -> DocumentElement:
    return DocumentElement(kind=kind, role=kind.value, page_number=page, content=content, figure_id=figure_id)


def png_bytes(width: int, height: int) -> bytes:
    """Just enough of a PNG for header parsing: signature + IHDR."""
    ihdr = struct.pack(">II", width, height) + b"\x08\x02\x00\x00\x00"
    return b"\x89PNG\r\n\x1a\n" + struct.pack(">I", 13) + b"IHDR" + ihdr + b"\x00\x00\x00\x00"


def jpeg_bytes(width: int, height: int) -> bytes:
    """SOI, an APP0 segment, then SOF0 carrying the size."""
    app0 = b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    sof0 = b"\xff\xc0" + struct.pack(">HBHHB", 11, 8, height, width, 1) + b"\x01\x11\x00"
    return b"\xff\xd8" + app0 + sof0 + b"\xff\xd9"


def two_page_result() -> AnalyzeResult:
    """
    Page 1: two paragraphs, then paragraphs 3-4 which sit inside a table.
    Page 2: heading "Results" and one paragraph.
    """
    p1 = paragraph("Introduction text.", 1, 100, 0)
    p2 = paragraph("More introduction.", 1, 150, 19)
    p3 = paragraph("Cell A", 1, 220, 38)
    p4 = paragraph("Cell B", 1, 240, 45)
    heading = paragraph("Results", 2, 100, 52, role="sectionHeading")
    p5 = paragraph("The results were good.", 2, 150, 60)
    return AnalyzeResult(
        content="",
        pages=[LayoutPage(page_number=1, width=612, height=792), LayoutPage(page_number=2, width=612, height=792)],
        paragraphs=[p1, p2, p3, p4, heading, p5],
        tables=[table([["Cell A", "Cell B"]], 1, 210, spans=[DocumentSpan(offset=38, length=13)])],
    )
