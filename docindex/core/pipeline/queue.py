import asyncio
import logging
import traceback
from typing import Any, Optional
from docindex.config.settings import settings
from docindex.core.errors import DocumentDownloadError
from docindex.core.events import StatusChannel, record_event
from docindex.core.pipeline.ingestion import ImageIngestionPipeline, IngestionPipeline, PipelineResult
from docindex.models.document import DocumentRecord, DocumentStatus, FileClass, StatusEvent, classify_file
from docindex.models.event_log import LogLevel
from docindex.storage.base import DocumentRepository, EventLogRepository, ObjectStore, SearchIndex

logger = logging.getLogger(__name__)


class ProcessingQueue:
    """
    Single-flight work loop over PENDING documents.
    - One drain at a time per process, held by a lock for the whole drain.
    - Documents are claimed with a compare-and-set, so two drains never share one.
    - A failing document is marked FAILED and the loop moves on.
    """

    def __init__(self,
                 repository: DocumentRepository,
                 store: ObjectStore,
                 search_index: SearchIndex,
                 text_pipeline: IngestionPipeline,
                 image_pipeline: ImageIngestionPipeline,
                 channel: StatusChannel,
                 event_logs: Optional[EventLogRepository] = None,
                 container: Optional[str] = None):
        self.repository = repository
        self.store = store
        self.search_index = search_index
        self.text_pipeline = text_pipeline
        self.image_pipeline = image_pipeline
        self.channel = channel
        self.event_logs = event_logs
        self.container = container or settings.storage.container

        self._lock = asyncio.Lock()
        self._signalled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_draining(self) -> bool:
        return self._lock.locked()

    async def start(self) -> None:
        """Startup recovery, then a first drain."""
        reset = await self.repository.reset_processing()
        if reset:
            logger.warning(f"Reset {reset} documents left in processing by a previous run")
            await record_event(self.event_logs, LogLevel.info,
                               f"Reset {reset} document(s) from processing to pending status")
        self.enqueue()

    def enqueue(self) -> None:
        """Non-blocking; safe to call any number of times."""
        if self._lock.locked():
            self._signalled = True
            return
        if self._task is not None and not self._task.done():
            # A drain is scheduled but has not taken the lock yet
            self._signalled = True
            return
        self._task = asyncio.create_task(self.drain())
        self._task.add_done_callback(self._on_drain_done)

    def _on_drain_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Queue drain stopped: {error!r}")

    async def wait_idle(self) -> None:
        """Waits for the scheduled drain, if any, to finish."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def drain(self) -> int:
        """Processes PENDING documents until none remain. Returns how many were processed."""
        if self._lock.locked():
            self._signalled = True
            return 0

        processed = 0
        async with self._lock:
            while True:
                self._signalled = False
                while True:
                    document = await self.repository.claim_next()
                    if document is None:
                        break
                    await self.process(document)
                    processed += 1
                # enqueue() during the last claim round means there may be new work
                if not self._signalled:
                    break

        if processed:
            logger.info(f"Queue drained: {processed} documents processed")
        return processed

    async def record(self,
                     document: DocumentRecord,
                     level: LogLevel,
                     message: str,
                     stack_trace: Optional[str] = None) -> None:
        await record_event(self.event_logs, level, f"{document.file_name} - {message}",
                           stack_trace=stack_trace, document_id=document.id)

    def publish(self, document: DocumentRecord, status: DocumentStatus) -> None:
        self.channel.publish(StatusEvent(user_id=document.user_id, document_id=document.id, status=status))

    async def transition(self, document: DocumentRecord, target: DocumentStatus, **values: Any) -> bool:
        changed = await self.repository.transition(document.id, DocumentStatus.processing, target, **values)
        if changed:
            self.publish(document, target)
        else:
            logger.warning(f"[{document.id}] Status was no longer processing; {target.value} not applied")
        return changed

    async def process(self, document: DocumentRecord) -> None:
        self.publish(document, DocumentStatus.processing)
        logger.info(f"[{document.id}] Processing {document.file_name}")
        await self.record(document, LogLevel.info, "processing document")

        try:
            data = await self.store.download(document.object_key, self.container)
            if data is None:
                raise DocumentDownloadError(f"Source file {document.object_key} not found")

            file_class = classify_file(document.file_name)
            if file_class == FileClass.unknown:
                logger.info(f"[{document.id}] Unsupported file type: {document.file_name}")
                await self.transition(document, DocumentStatus.not_supported)
                await self.record(document, LogLevel.info, "file type not supported")
                return

            if file_class == FileClass.image:
                result = await self.image_pipeline.run(document, data)
            else:
                result = await self.text_pipeline.run(document, data)

            await self.index(document, result)
            await self.transition(
                document,
                DocumentStatus.ready,
                summary=result.summary,
                page_count=result.page_count,
                token_count=result.token_count,
            )
            logger.info(f"[{document.id}] Ready: {len(result.nodes)} nodes, {result.token_count} tokens")
            await self.record(document, LogLevel.info, "document processing completed")

        except Exception as e:
            logger.exception(f"[{document.id}] Processing failed")
            stack_trace = traceback.format_exc()
            await self.transition(document, DocumentStatus.failed)
            await self.record(document, LogLevel.error, f"document processing failed: {e}", stack_trace=stack_trace)

    async def index(self, document: DocumentRecord, result: PipelineResult) -> None:
        """Replaces whatever the index held for this document with the new node set."""
        chunks = result.to_chunks(document)
        await self.search_index.remove({"document_id": document.id})
        count = await self.search_index.upsert(chunks)
        logger.info(f"[{document.id}] Indexed {count} nodes")
