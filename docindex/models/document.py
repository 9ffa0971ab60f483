from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field

class DocumentStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    ready = "ready"
    failed = "failed"
    not_supported = "not_supported"

# PROCESSING -> PENDING is only taken by startup recovery (reset_processing).
ALLOWED_TRANSITIONS: dict[DocumentStatus, set[DocumentStatus]] = {
    DocumentStatus.pending: {DocumentStatus.processing},
    DocumentStatus.processing: {
        DocumentStatus.ready,
        DocumentStatus.failed,
        DocumentStatus.not_supported,
        DocumentStatus.pending,
    },
    DocumentStatus.ready: set(),
    DocumentStatus.failed: set(),
    DocumentStatus.not_supported: set(),
}

def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())

class FileClass(str, Enum):
    text_based = "text-based"
    image = "image"
    unknown = "unknown"

TEXT_EXTENSIONS = {"pdf", "docx", "xlsx", "txt", "md"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png"}

def file_extension(file_name: str) -> str:
    return file_name.lower().rsplit(".", 1)[-1] if "." in file_name else ""

def classify_file(file_name: str) -> FileClass:
    extension = file_extension(file_name)
    if extension in TEXT_EXTENSIONS:
        return FileClass.text_based
    if extension in IMAGE_EXTENSIONS:
        return FileClass.image
    return FileClass.unknown

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class DocumentRecord(BaseModel):
    id: str
    user_id: str
    file_name: str
    status: DocumentStatus = DocumentStatus.pending
    page_count: int = 0
    token_count: int = 0
    summary: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def object_key(self) -> str:
        """Blob key of the uploaded source file."""
        return f"{self.id}/{self.file_name}"

class StatusEvent(BaseModel):
    user_id: str
    document_id: str
    status: DocumentStatus
    emitted_at: datetime = Field(default_factory=utc_now)
