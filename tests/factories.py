import asyncio
from collections.abc import Callable

import factory

from mapreducer.domain.config.summarize_config import SummarizeConfig
from mapreducer.domain.result.response import InvokeOptions, ModelResponse, Usage


class SummarizeConfigFactory(factory.Factory):
    """Fast limits: generous budget, no retries, short waits."""

    class Meta:
        model = SummarizeConfig

    tokens_per_minute = 100_000
    requests_per_minute = 100
    queue_concurrency = 5
    queue_interval_ms = 60_000
    token_budget_window_ms = 60_000
    token_budget_timeout_ms = 1_000
    map_output_max_tokens = 10
    reduce_output_max_tokens = 10
    hierarchy_group_size = 2
    temperature = 0.0
    chunk_tokens = 50
    chunk_overlap_tokens = 0
    max_retries = 0
    budget_poll_interval_ms = 10


class UsageFactory(factory.Factory):
    class Meta:
        model = Usage

    input_tokens = 20
    output_tokens = 5
    total_tokens = 25


class ModelResponseFactory(factory.Factory):
    class Meta:
        model = ModelResponse

    content = "A summary."
    usage = factory.SubFactory(UsageFactory)


Responder = Callable[[str], str | ModelResponse | BaseException]


class FakeModel:
    """
    In-memory LanguageModel. The responder maps a rendered prompt to the answer text,
    a full ModelResponse, or an exception to raise.
    """

    def __init__(
        self,
        responder: Responder | None = None,
        usage: Usage | None = None,
        delay: Callable[[str], float] | None = None,
    ):
        self.calls: list[tuple[str, InvokeOptions]] = []
        self.responder: Responder = responder or (lambda prompt: f"summary of {prompt}")
        self.usage: Usage | None = usage
        self.delay = delay

    async def invoke(self, prompt: str, options: InvokeOptions) -> ModelResponse:
        self.calls.append((prompt, options))
        if self.delay is not None:
            await asyncio.sleep(self.delay(prompt))
        result = self.responder(prompt)
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, ModelResponse):
            return result
        return ModelResponse(content=result, usage=self.usage)

    @property
    def prompts(self) -> list[str]:
        return [prompt for prompt, _ in self.calls]


def word_count(text: str) -> int:
    return len(text.split())
