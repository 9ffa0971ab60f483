import asyncio
from typing import List, Optional
from docindex.core.events import StatusChannel
from docindex.core.pipeline.ingestion import PipelineResult
from docindex.core.pipeline.queue import ProcessingQueue
from docindex.models.document import DocumentRecord, DocumentStatus
from docindex.models.node import Node
from docindex.models.event_log import LogLevel
from docindex.storage.document_store import SqlDocumentRepository
from docindex.storage.event_log_store import SqlEventLogRepository
from docindex.storage.file_store import LocalObjectStore
from helpers import InMemoryEventLogRepository, InMemoryRepository, InMemorySearchIndex

CONTAINER = "documents"


class StubPipeline:
    """Returns one embedded node per document; can fail or block on demand."""

    def __init__(self, fail_for: Optional[set] = None, gate: Optional[asyncio.Event] = None):
        self.fail_for = fail_for or set()
        self.gate = gate
        self.started = asyncio.Event()
        self.seen: List[str] = []

    async def run(self, document: DocumentRecord, data: bytes) -> PipelineResult:
        self.seen.append(document.id)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if document.id in self.fail_for:
            raise RuntimeError("extraction exploded")
        node = Node(id=f"{document.id}-0", index=0, content=data.decode(), page_number=1, tokens=3,
                    embedding=[0.1, 0.2])
        return PipelineResult(nodes=[node], summary=f"about {document.file_name}", page_count=2, token_count=3)


def build_queue(tmp_path, repository, text_pipeline=None, image_pipeline=None, event_logs=None):
    store = LocalObjectStore(str(tmp_path / "objects"))
    index = InMemorySearchIndex()
    channel = StatusChannel()
    queue = ProcessingQueue(
        repository=repository,
        store=store,
        search_index=index,
        text_pipeline=text_pipeline or StubPipeline(),
        image_pipeline=image_pipeline or StubPipeline(),
        channel=channel,
        event_logs=event_logs,
        container=CONTAINER,
    )
    return queue, store, index, channel


async def add_document(repository, store, document_id: str, file_name: str, data: Optional[bytes] = b"hello world"):
    record = DocumentRecord(id=document_id, user_id="u1", file_name=file_name)
    if data is not None:
        await store.upload(data, record.object_key, CONTAINER)
    return await repository.create(record)


def drain_events(subscriber) -> List[tuple]:
    events = []
    while not subscriber.empty():
        event = subscriber.get_nowait()
        events.append((event.document_id, event.status))
    return events


def test_successful_document_becomes_ready(tmp_path):
    async def main():
        repository = InMemoryRepository()
        queue, store, index, channel = build_queue(tmp_path, repository)
        subscriber = channel.subscribe()
        await add_document(repository, store, "d1", "report.pdf")

        processed = await queue.drain()

        record = await repository.get("d1")
        return processed, record, index, drain_events(subscriber)

    processed, record, index, events = asyncio.run(main())
    assert processed == 1
    assert record.status == DocumentStatus.ready
    assert record.summary == "about report.pdf"
    assert (record.page_count, record.token_count) == (2, 3)
    assert list(index.points) == ["d1-0"]
    assert index.remove_calls == [{"document_id": "d1"}]
    assert events == [("d1", DocumentStatus.processing), ("d1", DocumentStatus.ready)]


def test_images_go_to_the_image_pipeline(tmp_path):
    async def main():
        repository = InMemoryRepository()
        text, image = StubPipeline(), StubPipeline()
        queue, store, _, _ = build_queue(tmp_path, repository, text, image)
        await add_document(repository, store, "d1", "photo.JPG")
        await add_document(repository, store, "d2", "notes.md")
        await queue.drain()
        return text, image

    text, image = asyncio.run(main())
    assert image.seen == ["d1"]
    assert text.seen == ["d2"]


def test_unsupported_file_type(tmp_path):
    async def main():
        repository = InMemoryRepository()
        text, image = StubPipeline(), StubPipeline()
        queue, store, index, channel = build_queue(tmp_path, repository, text, image)
        subscriber = channel.subscribe()
        await add_document(repository, store, "d1", "archive.zip")
        await queue.drain()
        return await repository.get("d1"), text, image, index, drain_events(subscriber)

    record, text, image, index, events = asyncio.run(main())
    assert record.status == DocumentStatus.not_supported
    assert text.seen == [] and image.seen == []
    assert index.points == {}
    assert events[-1] == ("d1", DocumentStatus.not_supported)


def test_failure_does_not_stop_the_queue(tmp_path):
    async def main():
        repository = InMemoryRepository()
        queue, store, index, _ = build_queue(tmp_path, repository, StubPipeline(fail_for={"d1"}))
        await add_document(repository, store, "d1", "a.pdf")
        await add_document(repository, store, "d2", "b.pdf")
        processed = await queue.drain()
        return processed, await repository.get("d1"), await repository.get("d2"), index

    processed, first, second, index = asyncio.run(main())
    assert processed == 2
    assert first.status == DocumentStatus.failed
    assert second.status == DocumentStatus.ready
    assert list(index.points) == ["d2-0"]


def test_missing_source_file_fails(tmp_path):
    async def main():
        repository = InMemoryRepository()
        queue, store, _, _ = build_queue(tmp_path, repository)
        await add_document(repository, store, "d1", "a.pdf", data=None)
        await queue.drain()
        return await repository.get("d1")

    assert asyncio.run(main()).status == DocumentStatus.failed


def test_start_recovers_documents_left_processing(tmp_path):
    async def main():
        repository = SqlDocumentRepository(url=f"sqlite+aiosqlite:///{tmp_path}/docs.db")
        await repository.init()
        queue, store, _, _ = build_queue(tmp_path, repository)
        await add_document(repository, store, "d1", "a.pdf")
        # Simulate a crash mid-processing
        claimed = await repository.claim_next()
        assert claimed.status == DocumentStatus.processing

        await queue.start()
        await queue.wait_idle()
        record = await repository.get("d1")
        await repository.dispose()
        return record

    record = asyncio.run(main())
    assert record.status == DocumentStatus.ready
    assert record.summary == "about a.pdf"


def test_only_one_drain_runs_at_a_time(tmp_path):
    async def main():
        repository = InMemoryRepository()
        gate = asyncio.Event()
        pipeline = StubPipeline(gate=gate)
        queue, store, _, _ = build_queue(tmp_path, repository, pipeline)
        await add_document(repository, store, "d1", "a.pdf")

        first = asyncio.create_task(queue.drain())
        await pipeline.started.wait()
        assert queue.is_draining
        second = await queue.drain()

        gate.set()
        return await first, second, pipeline.seen

    first, second, seen = asyncio.run(main())
    assert second == 0
    assert first == 1
    assert seen == ["d1"]


def test_enqueue_during_drain_picks_up_new_work(tmp_path):
    async def main():
        repository = InMemoryRepository()
        gate = asyncio.Event()
        pipeline = StubPipeline(gate=gate)
        queue, store, _, _ = build_queue(tmp_path, repository, pipeline)
        await add_document(repository, store, "d1", "a.pdf")

        queue.enqueue()
        await pipeline.started.wait()

        await add_document(repository, store, "d2", "b.pdf")
        queue.enqueue()
        queue.enqueue()
        gate.set()

        await queue.wait_idle()
        return [await repository.get(d) for d in ("d1", "d2")], pipeline.seen

    records, seen = asyncio.run(main())
    assert [r.status for r in records] == [DocumentStatus.ready, DocumentStatus.ready]
    assert seen == ["d1", "d2"]


def test_enqueue_with_nothing_pending_is_harmless(tmp_path):
    async def main():
        repository = InMemoryRepository()
        queue, _, _, _ = build_queue(tmp_path, repository)
        queue.enqueue()
        await queue.wait_idle()
        return queue.is_draining

    assert asyncio.run(main()) is False


def test_failed_document_leaves_error_event_with_stack_trace(tmp_path):
    async def main():
        repository = InMemoryRepository()
        event_logs = SqlEventLogRepository(url=f"sqlite+aiosqlite:///{tmp_path}/logs.db")
        await event_logs.init()
        queue, store, _, _ = build_queue(tmp_path, repository, StubPipeline(fail_for={"d1"}), event_logs=event_logs)
        await add_document(repository, store, "d1", "broken.pdf")
        await add_document(repository, store, "d2", "fine.pdf")
        await queue.drain()

        errors = await event_logs.list(level=LogLevel.error)
        everything = await event_logs.list(limit=100)
        await event_logs.dispose()
        return errors, everything

    errors, everything = asyncio.run(main())
    assert len(errors) == 1
    failure = errors[0]
    assert failure.message == "broken.pdf - document processing failed: extraction exploded"
    assert "Traceback" in failure.stack_trace
    assert "RuntimeError: extraction exploded" in failure.stack_trace
    assert failure.properties == {"document_id": "d1"}

    messages = {e.message for e in everything}
    assert "broken.pdf - processing document" in messages
    assert "fine.pdf - document processing completed" in messages


def test_recovery_is_recorded(tmp_path):
    async def main():
        repository = InMemoryRepository()
        event_logs = InMemoryEventLogRepository()
        queue, store, _, _ = build_queue(tmp_path, repository, event_logs=event_logs)
        await add_document(repository, store, "d1", "a.pdf")
        await repository.claim_next()
        await queue.start()
        await queue.wait_idle()
        return [e.message for e in event_logs.entries]

    messages = asyncio.run(main())
    assert messages[0] == "Reset 1 document(s) from processing to pending status"
    assert messages[-1] == "a.pdf - document processing completed"
