from functools import lru_cache
from typing import Protocol
import tiktoken
from docindex.config.settings import settings

class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...

class TiktokenTokenizer:
    """Thin wrapper so the pipeline only sees encode/decode."""

    def __init__(self, encoding_name: str):
        self.encoding_name = encoding_name
        self.encoder = tiktoken.get_encoding(encoding_name)

    def encode(self, text: str) -> list[int]:
        # Document text may legitimately contain strings like "<|endoftext|>"
        return self.encoder.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self.encoder.decode(tokens)

    def count(self, text: str) -> int:
        return len(self.encode(text))

@lru_cache(maxsize=4)
def get_tokenizer(encoding_name: str | None = None) -> TiktokenTokenizer:
    return TiktokenTokenizer(encoding_name or settings.llm.tokenizer_encoding)
