from __future__ import annotations
from typing import Protocol, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from mapreducer.domain.result.response import InvokeOptions, ModelResponse


@runtime_checkable
class LanguageModel(Protocol):
    """
    Anything that can turn a rendered prompt into a completion.
    Failures should raise an error exposing an HTTP-like `status`
    (see ProviderError) so the retry policy can classify them.
    """

    async def invoke(self, prompt: str, options: InvokeOptions) -> ModelResponse: ...
