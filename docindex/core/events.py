import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from docindex.models.document import DocumentStatus, StatusEvent
from docindex.models.event_log import EventLog, LogGroup, LogLevel
from docindex.storage.base import EventLogRepository

logger = logging.getLogger(__name__)

class StatusChannel:
    """
    In-process topic for document status changes.
    Publishing never blocks the pipeline; a full subscriber queue drops the event.
    """

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._subscribers: list[asyncio.Queue[StatusEvent]] = []

    def subscribe(self) -> asyncio.Queue[StatusEvent]:
        queue: asyncio.Queue[StatusEvent] = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[StatusEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: StatusEvent) -> None:
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping status event for {event.document_id}: subscriber queue full")

class StatusNotifier(ABC):
    @abstractmethod
    async def notify(self, user_id: str, document_id: str, status: DocumentStatus) -> None:
        pass

class LoggingNotifier(StatusNotifier):
    async def notify(self, user_id: str, document_id: str, status: DocumentStatus) -> None:
        logger.info(f"document-update user={user_id} document={document_id} status={status.value}")

async def forward_status_events(channel: StatusChannel, notifier: StatusNotifier) -> None:
    """Delivers channel events to the notifier until cancelled."""
    queue = channel.subscribe()
    try:
        while True:
            event = await queue.get()
            try:
                await notifier.notify(event.user_id, event.document_id, event.status)
            except Exception:
                logger.exception(f"Status notification failed for {event.document_id}")
    finally:
        channel.unsubscribe(queue)

async def record_event(repository: Optional[EventLogRepository],
                       level: LogLevel,
                       message: str,
                       group: LogGroup = LogGroup.documents,
                       stack_trace: Optional[str] = None,
                       **properties: Any) -> None:
    """Writes an event log entry; a failed write is logged and never interrupts processing."""
    if repository is None:
        return
    try:
        await repository.create(EventLog(
            level=level,
            group=group,
            message=message,
            stack_trace=stack_trace,
            properties=properties,
        ))
    except Exception:
        logger.exception(f"Could not record event log entry: {message[:100]}")
