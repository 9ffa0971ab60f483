from unittest.mock import MagicMock
import asyncio
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from docindex.api.routes import documents, event_logs
from docindex.config.settings import settings
from docindex.models.document import DocumentRecord, DocumentStatus
from docindex.models.event_log import EventLog, LogLevel
from docindex.storage.file_store import LocalObjectStore
from helpers import InMemoryEventLogRepository, InMemoryRepository


@pytest.fixture
def app_state(tmp_path):
    app = FastAPI()
    app.include_router(documents.router, prefix="/api")
    app.include_router(event_logs.router, prefix="/api")
    app.state.repository = InMemoryRepository()
    app.state.store = LocalObjectStore(str(tmp_path / "objects"))
    app.state.queue = MagicMock(is_draining=False)
    app.state.event_logs = InMemoryEventLogRepository()
    return app


def test_upload_creates_pending_document_and_signals_queue(app_state):
    client = TestClient(app_state)
    response = client.post(
        "/api/documents",
        files={"file": ("report.pdf", b"%PDF-1.7", "application/pdf")},
        data={"user_id": "u1"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["file_name"] == "report.pdf"
    app_state.state.queue.enqueue.assert_called_once()

    stored = asyncio.run(app_state.state.store.download(f"{body['id']}/report.pdf", settings.storage.container))
    assert stored == b"%PDF-1.7"


def test_get_and_list_documents(app_state):
    repository = app_state.state.repository
    repository.records["d1"] = DocumentRecord(id="d1", user_id="u1", file_name="a.pdf", status=DocumentStatus.ready)
    repository.records["d2"] = DocumentRecord(id="d2", user_id="u2", file_name="b.pdf")
    client = TestClient(app_state)

    assert client.get("/api/documents/d1").json()["status"] == "ready"
    assert client.get("/api/documents/missing").status_code == 404
    assert [d["id"] for d in client.get("/api/documents", params={"user_id": "u1"}).json()] == ["d1"]


def test_queue_state(app_state):
    repository = app_state.state.repository
    repository.records["d1"] = DocumentRecord(id="d1", user_id="u1", file_name="a.pdf")
    repository.records["d2"] = DocumentRecord(id="d2", user_id="u1", file_name="b.pdf", status=DocumentStatus.processing)

    state = TestClient(app_state).get("/api/queue").json()
    assert state == {"draining": False, "pending": 1, "processing": 1}


def test_event_logs_filtered_by_level(app_state):
    store = app_state.state.event_logs
    asyncio.run(store.create(EventLog(level=LogLevel.info, message="a.pdf - processing document")))
    asyncio.run(store.create(EventLog(level=LogLevel.error, message="a.pdf - document processing failed: boom",
                                      stack_trace="Traceback ...", properties={"document_id": "d1"})))
    client = TestClient(app_state)

    response = client.get("/api/event-logs", params={"level": "error"})

    assert response.status_code == 200
    body = response.json()
    assert [e["message"] for e in body] == ["a.pdf - document processing failed: boom"]
    assert body[0]["stack_trace"] == "Traceback ..."
    assert body[0]["properties"] == {"document_id": "d1"}
    assert len(client.get("/api/event-logs").json()) == 2
    assert client.get("/api/event-logs", params={"limit": 0}).status_code == 422
