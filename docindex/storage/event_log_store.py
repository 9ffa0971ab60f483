import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Mapped, mapped_column

from docindex.config.settings import settings
from docindex.models.document import utc_now
from docindex.models.event_log import (
    MAX_MESSAGE_LENGTH, MAX_STACK_TRACE_LENGTH, EventLog, LogGroup, LogLevel,
)
from docindex.storage.base import EventLogRepository
from docindex.storage.document_store import Base, _ensure_sqlite_dir

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 1000


class EventLogRow(Base):
    __tablename__ = "event_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level: Mapped[str] = mapped_column(String(10), index=True)
    group: Mapped[str] = mapped_column("log_group", String(20), index=True)
    message: Mapped[str] = mapped_column(String(MAX_MESSAGE_LENGTH))
    stack_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    properties: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)

    def to_entry(self) -> EventLog:
        return EventLog(
            id=self.id,
            level=LogLevel(self.level),
            group=LogGroup(self.group),
            message=self.message,
            stack_trace=self.stack_trace,
            properties=self.properties or {},
            created_at=self.created_at,
        )


class SqlEventLogRepository(EventLogRepository):
    """
    Event log table in the same database as the documents.
    Pass the document repository's engine to share its connection pool.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        if engine is None:
            url = url or settings.database.url
            _ensure_sqlite_dir(url)
            engine = create_async_engine(url, echo=settings.database.echo, future=True)
        self.engine = engine
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False, autoflush=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def create(self, entry: EventLog) -> EventLog:
        async with self.session_factory() as session:
            row = EventLogRow(
                level=entry.level.value,
                group=entry.group.value,
                message=entry.message.strip()[:MAX_MESSAGE_LENGTH],
                stack_trace=entry.stack_trace[:MAX_STACK_TRACE_LENGTH] if entry.stack_trace else None,
                properties=entry.properties,
                created_at=entry.created_at,
            )
            session.add(row)
            await session.commit()
            return row.to_entry()

    async def list(self,
                   level: Optional[LogLevel] = None,
                   group: Optional[LogGroup] = None,
                   keywords: Optional[str] = None,
                   offset: int = 0,
                   limit: int = 50) -> List[EventLog]:
        query = select(EventLogRow)
        if level is not None:
            query = query.where(EventLogRow.level == level.value)
        if group is not None:
            query = query.where(EventLogRow.group == group.value)

        # Any keyword may match the message or the stack trace
        words = (keywords or "").split()
        if words:
            query = query.where(or_(*(
                column.ilike(f"%{word}%")
                for word in words
                for column in (EventLogRow.message, EventLogRow.stack_trace)
            )))

        query = (
            query.order_by(EventLogRow.created_at.desc(), EventLogRow.id.desc())
            .offset(max(0, offset))
            .limit(min(max(1, limit), MAX_LIST_LIMIT))
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [row.to_entry() for row in result.scalars()]
