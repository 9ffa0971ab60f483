import logging
import uuid
from typing import List
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from docindex.config.settings import settings
from docindex.core.pipeline.queue import ProcessingQueue
from docindex.models.document import DocumentRecord, DocumentStatus
from docindex.storage.base import DocumentRepository, ObjectStore

router = APIRouter()
logger = logging.getLogger(__name__)


# Dependencies (from app.state)
def get_repository(request: Request) -> DocumentRepository:
    return request.app.state.repository

def get_store(request: Request) -> ObjectStore:
    return request.app.state.store

def get_queue(request: Request) -> ProcessingQueue:
    return request.app.state.queue


@router.post("/documents", response_model=DocumentRecord, status_code=201, summary="Upload a document for indexing")
async def upload_document(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    repository: DocumentRepository = Depends(get_repository),
    store: ObjectStore = Depends(get_store),
    queue: ProcessingQueue = Depends(get_queue),
):
    """
    1. Stores the file bytes at {document_id}/{file_name}.
    2. Creates the document record as PENDING.
    3. Signals the queue; processing happens in the background.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="A file name is required.")

    try:
        data = await file.read()
        record = DocumentRecord(id=str(uuid.uuid4()), user_id=user_id, file_name=file.filename)
        logger.info(f"Uploading '{file.filename}' as {record.id} for user {user_id}")

        await store.upload(data, record.object_key, settings.storage.container)
        record = await repository.create(record)
    finally:
        await file.close()

    queue.enqueue()
    return record


@router.get("/documents/{document_id}", response_model=DocumentRecord, summary="Get a document and its status")
async def get_document(document_id: str, repository: DocumentRepository = Depends(get_repository)):
    record = await repository.get(document_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Document not found.")
    return record


@router.get("/documents", response_model=List[DocumentRecord], summary="List a user's documents")
async def list_documents(user_id: str, repository: DocumentRepository = Depends(get_repository)):
    return await repository.list_for_user(user_id)


@router.get("/queue", summary="Queue state")
async def queue_state(
    repository: DocumentRepository = Depends(get_repository),
    queue: ProcessingQueue = Depends(get_queue),
):
    return {
        "draining": queue.is_draining,
        "pending": await repository.count(DocumentStatus.pending),
        "processing": await repository.count(DocumentStatus.processing),
    }
