import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docindex.api.routes import documents, event_logs
from docindex.config.settings import settings
from docindex.core.chunk.splitter import NodeSplitter
from docindex.core.embed.batcher import EmbeddingBatcher
from docindex.core.embed.embedder import build_embedder
from docindex.core.events import LoggingNotifier, StatusChannel, forward_status_events
from docindex.core.generate.image_describer import ImageDescriber
from docindex.core.generate.llm_client import LLMClient
from docindex.core.generate.summarizer import SummaryReducer
from docindex.core.parse.layout_client import build_extractor
from docindex.core.parse.previews import PreviewRenderer
from docindex.core.pipeline.ingestion import ImageIngestionPipeline, IngestionPipeline
from docindex.core.pipeline.queue import ProcessingQueue
from docindex.core.synthesize.figures import FigureReviewer
from docindex.core.synthesize.synthesizer import DocumentSynthesizer
from docindex.core.tokenizer import get_tokenizer
from docindex.storage.document_store import SqlDocumentRepository
from docindex.storage.event_log_store import SqlEventLogRepository
from docindex.storage.file_store import LocalObjectStore
from docindex.storage.qdrant_store import QdrantNodeIndex

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
for noisy in ("httpx", "httpcore", "qdrant_client"):
    logging.getLogger(noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup: Initialize singletons ---
    logger.info("Initializing document indexing service...")

    # 1. Storage
    store = LocalObjectStore()
    repository = SqlDocumentRepository()
    await repository.init()
    event_log_store = SqlEventLogRepository(engine=repository.engine)
    await event_log_store.init()
    search_index = QdrantNodeIndex()
    await search_index.init()

    # 2. Collaborators (embedding model loaded once via class-singleton)
    tokenizer = get_tokenizer()
    llm_client = LLMClient()
    batcher = EmbeddingBatcher(build_embedder())

    # 3. Pipelines
    text_pipeline = IngestionPipeline(
        store=store,
        extractor=build_extractor(),
        figure_reviewer=FigureReviewer(store, llm_client),
        synthesizer=DocumentSynthesizer(tokenizer),
        splitter=NodeSplitter(tokenizer),
        batcher=batcher,
        summarizer=SummaryReducer(llm_client),
        previews=PreviewRenderer(store) if settings.previews.enabled else None,
        event_logs=event_log_store,
    )
    image_pipeline = ImageIngestionPipeline(
        store=store,
        describer=ImageDescriber(llm_client),
        batcher=batcher,
        tokenizer=tokenizer,
    )

    channel = StatusChannel(maxsize=settings.queue.event_buffer_size)
    queue = ProcessingQueue(
        repository=repository,
        store=store,
        search_index=search_index,
        text_pipeline=text_pipeline,
        image_pipeline=image_pipeline,
        channel=channel,
        event_logs=event_log_store,
    )
    notifications = asyncio.create_task(forward_status_events(channel, LoggingNotifier()))

    # 4. Store in app.state for dependency injection
    app.state.store = store
    app.state.repository = repository
    app.state.search_index = search_index
    app.state.channel = channel
    app.state.event_logs = event_log_store
    app.state.queue = queue

    if settings.queue.start_on_startup:
        await queue.start()

    logger.info("Initialization complete. All systems ready.")

    yield

    # --- Shutdown ---
    logger.info("Shutting down document indexing service...")
    notifications.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await notifications
    await search_index.close()
    await repository.dispose()


# Create FastAPI instance
app = FastAPI(
    title="docindex API",
    description="Document decomposition and indexing pipeline",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health Check Endpoint
@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok"}


app.include_router(documents.router, prefix="/api", tags=["Documents"])
app.include_router(event_logs.router, prefix="/api", tags=["Event Logs"])
