from datetime import datetime
from enum import Enum
from typing import Any
from pydantic import BaseModel, Field
from docindex.models.document import utc_now

class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warn = "warn"
    error = "error"

class LogGroup(str, Enum):
    general = "general"
    documents = "documents"
    exception = "exception"

MAX_MESSAGE_LENGTH = 1000
MAX_STACK_TRACE_LENGTH = 5000

class EventLog(BaseModel):
    """Persisted operational event, queryable through the API."""

    id: int | None = None
    level: LogLevel = LogLevel.info
    group: LogGroup = LogGroup.general
    message: str
    stack_trace: str | None = None
    properties: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utc_now)
