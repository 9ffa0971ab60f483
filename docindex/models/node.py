from enum import Enum
from pydantic import BaseModel
from docindex.models.layout import BoundingRegion, DocumentSpan

class ElementKind(str, Enum):
    paragraph = "paragraph"
    heading = "heading"
    table = "table"
    figure = "figure"
    noise = "noise"

    @classmethod
    def from_role(cls, role: str | None) -> "ElementKind":
        if role in HEADING_ROLES:
            return cls.heading
        if role in NOISE_ROLES:
            return cls.noise
        if role == "table":
            return cls.table
        if role == "figure":
            return cls.figure
        return cls.paragraph

HEADING_ROLES = {"title", "sectionHeading"}
NOISE_ROLES = {"pageHeader", "pageFooter", "pageNumber"}

class DocumentElement(BaseModel):
    kind: ElementKind
    role: str                                # raw role tag from layout extraction
    page_number: int
    content: str
    html: str | None = None                  # tables only
    figure_id: str | None = None             # figures only
    bounding_regions: list[BoundingRegion] = []
    spans: list[DocumentSpan] = []
    tokens: int | None = None                # set when the element joins a node

class Node(BaseModel):
    id: str
    index: int
    section_heading: str = ""
    content: str = ""
    page_number: int
    tokens: int = 0
    leaf_nodes: list[DocumentElement] = []
    embedding: list[float] | None = None     # None before embedding step

class DocumentChunk(BaseModel):
    """Search payload for one node."""

    id: str
    embedding: list[float]
    user_id: str
    document_id: str
    document_file_name: str
    document_page_count: int
    document_node_count: int
    document_token_count: int
    document_summary: str
    node_index: int
    node_section_heading: str
    node_content: str
    node_token_count: int
    node_page_number: int
