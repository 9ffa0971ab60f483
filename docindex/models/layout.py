from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class LayoutModel(BaseModel):
    # Layout payloads arrive camelCased from the extraction service; cache files keep that shape.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

class DocumentSpan(LayoutModel):
    offset: int
    length: int

class BoundingRegion(LayoutModel):
    page_number: int
    polygon: list[float] = []                # [x1, y1, x2, y2, x3, y3, x4, y4]

class LayoutParagraph(LayoutModel):
    role: str | None = None                  # None means plain paragraph
    content: str = ""
    bounding_regions: list[BoundingRegion] = []
    spans: list[DocumentSpan] = []

class LayoutTableCell(LayoutModel):
    kind: str | None = None                  # "content" | "columnHeader" | "rowHeader" | ...
    row_index: int
    column_index: int
    row_span: int | None = None
    column_span: int | None = None
    content: str = ""

class LayoutTable(LayoutModel):
    row_count: int
    column_count: int
    cells: list[LayoutTableCell] = []
    bounding_regions: list[BoundingRegion] = []
    spans: list[DocumentSpan] = []

class LayoutCaption(LayoutModel):
    content: str = ""
    spans: list[DocumentSpan] = []

class LayoutFigure(LayoutModel):
    id: str
    bounding_regions: list[BoundingRegion] = []
    spans: list[DocumentSpan] = []
    caption: LayoutCaption | None = None

class LayoutPage(LayoutModel):
    page_number: int
    width: float | None = None
    height: float | None = None
    unit: str | None = None

class AnalyzeResult(LayoutModel):
    content: str = ""
    pages: list[LayoutPage] = []
    paragraphs: list[LayoutParagraph] = []
    tables: list[LayoutTable] = []
    figures: list[LayoutFigure] = []
    result_id: str = ""

def first_region(regions: list[BoundingRegion]) -> BoundingRegion | None:
    return regions[0] if regions else None

class FigureDescription(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str
    keywords: list[str]
    classification: str                      # photo | graph | table | diagram | chart | image | figure
    ocr_text: str

class ImageDescription(FigureDescription):
    pass

class PixelDimensions(BaseModel):
    width: int = 0
    height: int = 0

class BoundingBox(BaseModel):
    x: float
    y: float
    width: float
    height: float

class PositionPercentage(BaseModel):
    top_percent: float
    bottom_percent: float

class ProcessedFigure(LayoutModel):
    """A layout figure plus the review verdict and, when processed, its description."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    bounding_regions: list[BoundingRegion] = []
    spans: list[DocumentSpan] = []
    page_number: int = 0
    process: bool = False
    is_small: bool = False
    is_header: bool = False
    is_footer: bool = False
    dimensions_pixels: PixelDimensions | None = None
    bounding_box: BoundingBox | None = None
    position_percentage: PositionPercentage | None = None
    description: str | None = None
    keywords: list[str] = Field(default_factory=list)
    classification: str | None = None
    ocr_text: str | None = None
