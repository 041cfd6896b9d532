"""
Token estimation for budget admission. The tracker records the provider-reported usage
when a call returns it; these counts are only used to estimate a request before it is sent.

Example usage:

    from mapreducer.core.model.tokens import count_tokens, token_counter_for

    count_tokens("Hello, world!", "o200k")
    counter = token_counter_for("cl100k")
    counter("Hello, world!")
"""

from __future__ import annotations
from collections.abc import Callable
from functools import lru_cache
from typing import TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from tiktoken import Encoding

logger = logging.getLogger(__name__)

ENCODING_NAMES: dict[str, str] = {
    "o200k": "o200k_base",
    "cl100k": "cl100k_base",
}

TokenCounter = Callable[[str], int]


@lru_cache(maxsize=None)
def get_encoding(encoding: str) -> Encoding:
    """Lazy-loads and caches the tiktoken encoding for a short encoding id."""
    import tiktoken

    try:
        encoding_name = ENCODING_NAMES[encoding]
    except KeyError:
        raise ValueError(
            f"Unknown encoding {encoding!r}; expected one of {sorted(ENCODING_NAMES)}"
        ) from None
    logger.debug(f"Loading tiktoken encoding '{encoding_name}'")
    return tiktoken.get_encoding(encoding_name)


def count_tokens(text: str, encoding: str = "o200k") -> int:
    """
    Counts the number of tokens in a text string.
    """
    return len(get_encoding(encoding).encode(text, disallowed_special=()))


def token_counter_for(encoding: str = "o200k") -> TokenCounter:
    """
    Returns a one-argument counter bound to an encoding, as expected by the chunker
    and the summarizer.
    """
    # Fail fast on unknown encodings rather than on first use
    get_encoding(encoding)

    def counter(text: str) -> int:
        return count_tokens(text, encoding)

    return counter
