import logging
import os
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import DateTime, Integer, String, Text, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from docindex.config.settings import settings
from docindex.core.errors import InvalidTransitionError
from docindex.models.document import DocumentRecord, DocumentStatus, can_transition, utc_now
from docindex.storage.base import DocumentRepository

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    file_name: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), index=True, default=DocumentStatus.pending.value)
    page_count: Mapped[int] = mapped_column(Integer, default=0)
    token_count: Mapped[int] = mapped_column(Integer, default=0)
    summary: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    def to_record(self) -> DocumentRecord:
        return DocumentRecord(
            id=self.id,
            user_id=self.user_id,
            file_name=self.file_name,
            status=DocumentStatus(self.status),
            page_count=self.page_count,
            token_count=self.token_count,
            summary=self.summary or "",
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


UPDATABLE_FIELDS = {"page_count", "token_count", "summary"}


def _ensure_sqlite_dir(url: str) -> None:
    prefix = "sqlite+aiosqlite:///"
    if url.startswith(prefix) and ":memory:" not in url:
        directory = os.path.dirname(url[len(prefix):])
        if directory:
            os.makedirs(directory, exist_ok=True)


class SqlDocumentRepository(DocumentRepository):
    """
    Document records in a relational table.
    Status changes are single UPDATE statements keyed on the expected status,
    so two drains can never claim the same row.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self.url = url or settings.database.url
        if engine is None:
            _ensure_sqlite_dir(self.url)
            engine = create_async_engine(self.url, echo=settings.database.echo, future=True)
        self.engine = engine
        self.session_factory = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
            autoflush=False,
        )

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Document table ready")

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def create(self, record: DocumentRecord) -> DocumentRecord:
        async with self.session_factory() as session:
            row = DocumentRow(
                id=record.id,
                user_id=record.user_id,
                file_name=record.file_name,
                status=record.status.value,
                page_count=record.page_count,
                token_count=record.token_count,
                summary=record.summary,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            session.add(row)
            await session.commit()
            logger.info(f"Document created | id={record.id} | file={record.file_name}")
            return row.to_record()

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        async with self.session_factory() as session:
            row = await session.get(DocumentRow, document_id)
            return row.to_record() if row else None

    async def list_for_user(self, user_id: str) -> List[DocumentRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DocumentRow)
                .where(DocumentRow.user_id == user_id)
                .order_by(DocumentRow.created_at.desc())
            )
            return [row.to_record() for row in result.scalars()]

    async def count(self, status: DocumentStatus) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(DocumentRow).where(DocumentRow.status == status.value)
            )
            return int(result.scalar_one())

    async def claim_next(self) -> Optional[DocumentRecord]:
        while True:
            async with self.session_factory() as session:
                candidate = await session.execute(
                    select(DocumentRow.id)
                    .where(DocumentRow.status == DocumentStatus.pending.value)
                    .order_by(DocumentRow.created_at, DocumentRow.id)
                    .limit(1)
                )
                document_id = candidate.scalar_one_or_none()
                if document_id is None:
                    return None

                result = await session.execute(
                    update(DocumentRow)
                    .where(DocumentRow.id == document_id)
                    .where(DocumentRow.status == DocumentStatus.pending.value)
                    .values(status=DocumentStatus.processing.value, updated_at=utc_now())
                )
                await session.commit()

                if result.rowcount == 1:
                    row = await session.get(DocumentRow, document_id, populate_existing=True)
                    return row.to_record() if row else None

            # Lost the race for this row; look for the next one
            logger.debug(f"Claim of {document_id} lost to another drain")

    async def transition(self,
                         document_id: str,
                         expected: DocumentStatus,
                         target: DocumentStatus,
                         **values: Any) -> bool:
        if not can_transition(expected, target):
            raise InvalidTransitionError(document_id, expected.value, target.value)

        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        async with self.session_factory() as session:
            result = await session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .where(DocumentRow.status == expected.value)
                .values(status=target.value, updated_at=utc_now(), **values)
            )
            await session.commit()
            return result.rowcount == 1

    async def reset_processing(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                update(DocumentRow)
                .where(DocumentRow.status == DocumentStatus.processing.value)
                .values(status=DocumentStatus.pending.value, updated_at=utc_now())
            )
            await session.commit()
            return result.rowcount
