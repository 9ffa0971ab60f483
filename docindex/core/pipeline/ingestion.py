import logging
from dataclasses import dataclass
from typing import Callable, List, Optional
from pydantic import TypeAdapter
from docindex.config.settings import settings
from docindex.core.cache import AnalysisCache
from docindex.core.events import record_event
from docindex.core.chunk.splitter import NodeSplitter
from docindex.core.embed.batcher import EmbeddingBatcher
from docindex.core.generate.image_describer import ImageDescriber
from docindex.core.generate.prompt_builder import PromptBuilder
from docindex.core.generate.summarizer import SummaryReducer
from docindex.core.parse.base import LayoutExtractor
from docindex.core.parse.previews import PreviewRenderer
from docindex.core.synthesize.figures import FigureReviewer
from docindex.core.synthesize.sections import node_id
from docindex.core.synthesize.synthesizer import DocumentSynthesizer
from docindex.core.tokenizer import Tokenizer
from docindex.models.document import DocumentRecord, file_extension
from docindex.models.event_log import LogLevel
from docindex.models.layout import AnalyzeResult, ImageDescription, ProcessedFigure
from docindex.models.node import DocumentChunk, Node
from docindex.storage.base import EventLogRepository, ObjectStore

logger = logging.getLogger(__name__)

ANALYZE_STAGE = "analyze-result"
PREVIEWS_STAGE = "previews"
FIGURES_STAGE = "figures"
EMBEDDINGS_STAGE = "embeddings-nodes"
SUMMARY_STAGE = "summary"
IMAGE_DESCRIPTION_STAGE = "image-description"

ANALYZE_ADAPTER = TypeAdapter(AnalyzeResult)
PREVIEWS_ADAPTER = TypeAdapter(List[str])
FIGURES_ADAPTER = TypeAdapter(List[ProcessedFigure])
NODES_ADAPTER = TypeAdapter(List[Node])
SUMMARY_ADAPTER = TypeAdapter(str)
IMAGE_DESCRIPTION_ADAPTER = TypeAdapter(ImageDescription)


@dataclass
class PipelineResult:
    nodes: List[Node]
    summary: str
    page_count: int
    token_count: int

    def to_chunks(self, document: DocumentRecord) -> List[DocumentChunk]:
        """One search payload per node; nodes without a vector are skipped."""
        return [
            DocumentChunk(
                id=node.id,
                embedding=node.embedding,
                user_id=document.user_id,
                document_id=document.id,
                document_file_name=document.file_name,
                document_page_count=self.page_count,
                document_node_count=len(self.nodes),
                document_token_count=self.token_count,
                document_summary=self.summary,
                node_index=node.index,
                node_section_heading=node.section_heading,
                node_content=node.content,
                node_token_count=node.tokens,
                node_page_number=node.page_number,
            )
            for node in self.nodes
            if node.embedding is not None
        ]


class IngestionPipeline:
    """
    Orchestrates a text-based document:
    previews -> analyze -> review figures -> synthesize -> split -> embed -> summarize
    Every expensive stage is checkpointed, so a re-run picks up where the last one stopped.
    """

    def __init__(self,
                 store: ObjectStore,
                 extractor: LayoutExtractor,
                 figure_reviewer: FigureReviewer,
                 synthesizer: DocumentSynthesizer,
                 splitter: NodeSplitter,
                 batcher: EmbeddingBatcher,
                 summarizer: SummaryReducer,
                 previews: Optional[PreviewRenderer] = None,
                 event_logs: Optional[EventLogRepository] = None,
                 container: Optional[str] = None):
        self.store = store
        self.extractor = extractor
        self.figure_reviewer = figure_reviewer
        self.synthesizer = synthesizer
        self.splitter = splitter
        self.batcher = batcher
        self.summarizer = summarizer
        self.previews = previews
        self.event_logs = event_logs
        self.container = container or settings.storage.container

    async def run(self,
                  document: DocumentRecord,
                  data: bytes,
                  progress_callback: Optional[Callable[[int, str], None]] = None) -> PipelineResult:
        doc_id = document.id
        cache = AnalysisCache(self.store, doc_id, self.container)

        async def update_progress(progress: int, message: str):
            if progress_callback:
                progress_callback(progress, message)
            logger.info(f"[{doc_id}] {progress}%: {message}")
            await record_event(self.event_logs, LogLevel.info, f"{document.file_name} - {progress}%: {message}",
                               document_id=doc_id)

        await update_progress(5, "Starting processing")

        # 1. Page previews
        if self.previews is not None and file_extension(document.file_name) == "pdf":
            await update_progress(10, "Rendering page previews")
            await cache.fetch_or_compute(
                PREVIEWS_STAGE, PREVIEWS_ADAPTER, lambda: self.previews.render(doc_id, data)
            )

        # 2. Layout extraction
        await update_progress(20, "Analysing document layout")
        result = await cache.fetch_or_compute(
            ANALYZE_STAGE, ANALYZE_ADAPTER, lambda: self.analyze(doc_id, document.file_name, data)
        )
        await update_progress(35, f"Extracted {len(result.paragraphs)} paragraphs, "
                                  f"{len(result.tables)} tables, {len(result.figures)} figures")

        # 3. Figures
        await update_progress(40, "Reviewing figures")
        figures = await cache.fetch_or_compute(
            FIGURES_STAGE, FIGURES_ADAPTER, lambda: self.figure_reviewer.review(doc_id, result)
        )

        # 4. Sections
        await update_progress(55, "Grouping sections")
        nodes = self.synthesizer.synthesize(doc_id, result, figures)
        nodes = self.splitter.split(doc_id, nodes)
        await update_progress(60, f"Built {len(nodes)} nodes")

        # 5. Embedding
        await update_progress(65, "Generating embeddings")
        nodes = await cache.fetch_or_compute(
            EMBEDDINGS_STAGE, NODES_ADAPTER, lambda: self.batcher.embed(doc_id, nodes)
        )

        # 6. Summary
        await update_progress(85, "Summarizing document")
        summary = await cache.fetch_or_compute(
            SUMMARY_STAGE, SUMMARY_ADAPTER, lambda: self.summarizer.summarize(doc_id, nodes)
        )

        await update_progress(100, "Processing completed successfully")
        return PipelineResult(
            nodes=nodes,
            summary=summary,
            page_count=len(result.pages),
            token_count=sum(n.tokens for n in nodes),
        )

    async def analyze(self, doc_id: str, file_name: str, data: bytes) -> AnalyzeResult:
        """Extracts the layout and stores each figure image where the reviewer expects it."""
        result = await self.extractor.extract(data, file_name)
        for figure in result.figures:
            try:
                image = await self.extractor.download_figure(result, figure.id)
                if image is None:
                    logger.error(f"[{doc_id}] Figure {figure.id} could not be downloaded")
                    continue
                await self.store.upload(image, f"{doc_id}/figures/{figure.id}.png", self.container)
            except Exception:
                logger.exception(f"[{doc_id}] Error storing figure {figure.id}")
        return result


class ImageIngestionPipeline:
    """An uploaded image becomes a single described node."""

    def __init__(self,
                 store: ObjectStore,
                 describer: ImageDescriber,
                 batcher: EmbeddingBatcher,
                 tokenizer: Tokenizer,
                 container: Optional[str] = None):
        self.store = store
        self.describer = describer
        self.batcher = batcher
        self.tokenizer = tokenizer
        self.container = container or settings.storage.container

    async def run(self, document: DocumentRecord, data: bytes) -> PipelineResult:
        doc_id = document.id
        cache = AnalysisCache(self.store, doc_id, self.container)

        description = await cache.fetch_or_compute(
            IMAGE_DESCRIPTION_STAGE, IMAGE_DESCRIPTION_ADAPTER, lambda: self.describer.describe(data)
        )

        content = PromptBuilder.build_image_node_content(description, f"/{document.object_key}")
        tokens = len(self.tokenizer.encode(content))
        node = Node(
            id=node_id(doc_id, 0),
            index=0,
            content=content,
            page_number=1,
            tokens=tokens,
        )

        nodes = await cache.fetch_or_compute(
            EMBEDDINGS_STAGE, NODES_ADAPTER, lambda: self.batcher.embed(doc_id, [node])
        )
        logger.info(f"[{doc_id}] Image described and embedded ({tokens} tokens)")

        return PipelineResult(nodes=nodes, summary=description.description, page_count=1, token_count=tokens)
