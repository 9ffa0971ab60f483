from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request

from docindex.models.event_log import EventLog, LogGroup, LogLevel
from docindex.storage.base import EventLogRepository

router = APIRouter()


def get_event_logs(request: Request) -> EventLogRepository:
    return request.app.state.event_logs


@router.get("/event-logs", response_model=List[EventLog], summary="List processing event logs, newest first")
async def list_event_logs(
    level: Optional[LogLevel] = None,
    group: Optional[LogGroup] = None,
    keywords: Optional[str] = None,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    event_logs: EventLogRepository = Depends(get_event_logs),
):
    return await event_logs.list(level=level, group=group, keywords=keywords, offset=offset, limit=limit)
