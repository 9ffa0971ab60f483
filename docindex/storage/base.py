from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from docindex.models.document import DocumentRecord, DocumentStatus
from docindex.models.event_log import EventLog, LogGroup, LogLevel
from docindex.models.node import DocumentChunk

class ObjectStore(ABC):
    @abstractmethod
    async def upload(self, data: bytes, key: str, container: str) -> None:
        pass

    @abstractmethod
    async def download(self, key: str, container: str) -> Optional[bytes]:
        """Returns None when the object does not exist."""
        pass

    @abstractmethod
    async def delete(self, key: str, container: str) -> None:
        pass

    @abstractmethod
    async def list(self, prefix: str, container: str) -> List[str]:
        pass

class SearchIndex(ABC):
    @abstractmethod
    async def upsert(self, chunks: List[DocumentChunk]) -> int:
        pass

    @abstractmethod
    async def remove(self, filters: Dict[str, Any]) -> None:
        pass

class DocumentRepository(ABC):
    @abstractmethod
    async def init(self) -> None:
        pass

    @abstractmethod
    async def create(self, record: DocumentRecord) -> DocumentRecord:
        pass

    @abstractmethod
    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[DocumentRecord]:
        pass

    @abstractmethod
    async def count(self, status: DocumentStatus) -> int:
        pass

    @abstractmethod
    async def claim_next(self) -> Optional[DocumentRecord]:
        """Atomically moves the oldest PENDING document to PROCESSING and returns it."""
        pass

    @abstractmethod
    async def transition(self,
                         document_id: str,
                         expected: DocumentStatus,
                         target: DocumentStatus,
                         **values: Any) -> bool:
        """Compare-and-set on status. Returns False when the current status is not `expected`."""
        pass

    @abstractmethod
    async def reset_processing(self) -> int:
        """Startup recovery: PROCESSING -> PENDING for every stale document."""
        pass

class EventLogRepository(ABC):
    @abstractmethod
    async def init(self) -> None:
        pass

    @abstractmethod
    async def create(self, entry: EventLog) -> EventLog:
        pass

    @abstractmethod
    async def list(self,
                   level: Optional[LogLevel] = None,
                   group: Optional[LogGroup] = None,
                   keywords: Optional[str] = None,
                   offset: int = 0,
                   limit: int = 50) -> List[EventLog]:
        """Newest first."""
        pass
