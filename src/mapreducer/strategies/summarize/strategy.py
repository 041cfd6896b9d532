from __future__ import annotations
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mapreducer.strategies.summarize.summarizers.chunker import Segment


class SummarizationStrategy(ABC):
    """
    Abstract base class for summarization strategies.
    """

    @abstractmethod
    async def __call__(self, text: str, **kwargs) -> str:
        """
        Execute the summarization workflow.
        """
        ...


class ChunkingStrategy(ABC):
    """
    Abstract base class for chunking strategies.
    """

    @abstractmethod
    def __call__(self, text: str, **kwargs) -> list[Segment]:
        """
        Split text into ordered, LLM-ready segments.
        """
        ...
