import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional
from docindex.core.tokenizer import Tokenizer
from docindex.models.node import DocumentElement, ElementKind, Node

logger = logging.getLogger(__name__)

NODE_NAMESPACE = uuid.UUID("6f1c2a7e-3d4b-5c8f-9a0e-1b2c3d4e5f60")


def node_id(document_id: str, index: int, segment: Optional[int] = None) -> str:
    """Stable node id, so re-runs upsert over the same points."""
    name = f"{document_id}:{index}" if segment is None else f"{document_id}:{index}:{segment}"
    return str(uuid.uuid5(NODE_NAMESPACE, name))


@dataclass
class _OpenSection:
    heading: str = ""
    content: List[str] = field(default_factory=list)
    tokens: int = 0
    leaves: List[DocumentElement] = field(default_factory=list)
    page_number: Optional[int] = None


class SectionGrouper:
    """
    Groups an ordered element stream into heading-scoped nodes.

    Consecutive headings merge into one heading joined by " | ".
    A heading that follows content closes the open section.
    Content with no open section opens one with an empty heading.
    """

    def __init__(self, tokenizer: Tokenizer):
        self.tokenizer = tokenizer

    def render(self, document_id: str, element: DocumentElement) -> str:
        if element.kind == ElementKind.figure:
            return f"![{element.content}](/{document_id}/figures/{element.figure_id}.png)"
        return element.content

    def group(self, document_id: str, elements: List[DocumentElement]) -> List[Node]:
        sections: List[_OpenSection] = []
        current: Optional[_OpenSection] = None
        making_heading = False
        last_kind: Optional[ElementKind] = None

        for element in elements:
            if element.kind == ElementKind.noise:
                continue

            if element.kind == ElementKind.heading:
                if not making_heading and current is not None:
                    sections.append(current)
                    current = None
                making_heading = True

                if current is None or last_kind != ElementKind.heading:
                    current = _OpenSection(heading=element.content, page_number=element.page_number)
                else:
                    current.heading += " | " + element.content
            else:
                if current is None:
                    current = _OpenSection(page_number=element.page_number)
                making_heading = False

                text = self.render(document_id, element)
                tokens = len(self.tokenizer.encode(text))
                current.content.append(text)
                current.tokens += tokens
                current.leaves.append(element.model_copy(update={"tokens": tokens}))

            last_kind = element.kind

        if current is not None:
            sections.append(current)

        nodes = [
            Node(
                id=node_id(document_id, i),
                index=i,
                section_heading=section.heading,
                content=" ".join(section.content),
                page_number=section.page_number or 1,
                tokens=section.tokens,
                leaf_nodes=section.leaves,
            )
            for i, section in enumerate(sections)
        ]
        logger.info(f"[{document_id}] Grouped {len(elements)} elements into {len(nodes)} sections")
        return nodes
