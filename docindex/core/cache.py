import logging
from typing import Awaitable, Callable, Optional, TypeVar
from pydantic import TypeAdapter, ValidationError
from docindex.core.errors import CacheError
from docindex.storage.base import ObjectStore
from docindex.config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

class AnalysisCache:
    """
    Stage checkpoints for one document, stored as JSON at
    {document_id}/working/{stage}.json in the object store.
    Every stage reads before it computes, so a re-run resumes where the last one stopped.
    """

    def __init__(self, store: ObjectStore, document_id: str, container: Optional[str] = None):
        self.store = store
        self.document_id = document_id
        self.container = container or settings.storage.container

    def key(self, stage: str) -> str:
        return f"{self.document_id}/working/{stage}.json"

    async def load(self, stage: str, adapter: TypeAdapter[T]) -> Optional[T]:
        raw = await self.store.download(self.key(stage), self.container)
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[{self.document_id}] Ignoring unreadable checkpoint '{stage}': {e.error_count()} errors")
            return None

    async def save(self, stage: str, value: T, adapter: TypeAdapter[T]) -> None:
        payload = adapter.dump_json(value, by_alias=True)
        try:
            await self.store.upload(payload, self.key(stage), self.container)
        except OSError as e:
            raise CacheError(f"Could not write checkpoint '{stage}' for {self.document_id}: {e}") from e

    async def fetch_or_compute(self,
                               stage: str,
                               adapter: TypeAdapter[T],
                               compute: Callable[[], Awaitable[T]]) -> T:
        cached = await self.load(stage, adapter)
        if cached is not None:
            logger.info(f"[{self.document_id}] Using cached '{stage}'")
            return cached

        value = await compute()
        await self.save(stage, value, adapter)
        return value
