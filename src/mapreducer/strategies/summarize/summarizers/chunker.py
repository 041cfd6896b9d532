from __future__ import annotations
from collections.abc import Iterable, Mapping
from typing import Any, override
from pydantic import BaseModel, Field
import json
import logging
import semchunk

from mapreducer.core.model.tokens import TokenCounter, token_counter_for
from mapreducer.strategies.summarize.strategy import ChunkingStrategy

logger = logging.getLogger(__name__)


class Segment(BaseModel):
    index: int = Field(..., ge=0, description="Position in the original text.")
    text: str
    token_count: int = Field(..., ge=0, description="Approximate token count.")


class Chunker(ChunkingStrategy):
    """
    Splits text on semantic boundaries under a token limit, with a fixed token overlap
    between neighbouring segments. Wraps the 'semchunk' library.

    The defaults (18k tokens, 500 overlap) favour few, large chunks so the map phase
    makes as few calls as possible while the overlap restores context lost at a split.
    """

    def __init__(
        self,
        chunk_tokens: int = 18000,
        overlap_tokens: int = 500,
        encoding: str = "o200k",
        token_counter: TokenCounter | None = None,
        memoize: bool = True,
    ):
        if chunk_tokens <= 0:
            raise ValueError("chunk_tokens must be greater than 0")
        if not 0 <= overlap_tokens < chunk_tokens:
            raise ValueError("overlap_tokens must be >= 0 and smaller than chunk_tokens")
        self.chunk_tokens: int = chunk_tokens
        self.overlap_tokens: int = overlap_tokens
        self.encoding: str = encoding
        self.memoize: bool = memoize
        self._token_counter: TokenCounter | None = token_counter

    @property
    def token_counter(self) -> TokenCounter:
        # semchunk requires a callable, not a tokenizer object
        if self._token_counter is None:
            self._token_counter = token_counter_for(self.encoding)
        return self._token_counter

    @override
    def __call__(self, text: str, **kwargs) -> list[Segment]:
        if not text or not text.strip():
            logger.warning("No text to chunk, returning no segments")
            return []

        count = self.token_counter
        logger.info(f"Processing text with {count(text)} tokens")

        chunks = semchunk.chunk(
            text,
            chunk_size=self.chunk_tokens,
            token_counter=count,
            memoize=self.memoize,
            overlap=self.overlap_tokens or None,
        )

        segments = [
            Segment(index=i, text=chunk, token_count=count(chunk))
            for i, chunk in enumerate(chunks)
        ]
        total = sum(s.token_count for s in segments)
        logger.info(f"Created {len(segments)} chunks with total {total} tokens")
        logger.debug(f"Token distribution: {[s.token_count for s in segments]}")
        return segments


def text_from_items(items: Iterable[Any] | Mapping[str, Any]) -> str:
    """
    Serialize structured input records (e.g. a list of article dicts) into one text blob
    for chunking. A single record is treated as a list of one. Plain strings pass
    through unchanged.
    """
    if isinstance(items, str):
        return items
    if isinstance(items, Mapping):
        items = [items]
    return json.dumps(list(items), ensure_ascii=False)
