class DocIndexError(Exception):
    """Base class for pipeline errors."""

class ExtractionError(DocIndexError):
    pass

class EmbeddingError(DocIndexError):
    pass

class LLMError(DocIndexError):
    pass

class DocumentDownloadError(DocIndexError):
    pass

class CacheError(DocIndexError):
    pass

class InvalidTransitionError(DocIndexError):
    def __init__(self, document_id: str, current: str, target: str):
        super().__init__(f"Invalid status transition for {document_id}: {current} -> {target}")
        self.document_id = document_id
        self.current = current
        self.target = target
