from __future__ import annotations
from functools import cached_property
from typing import TYPE_CHECKING
import logging
import os
import time

from mapreducer.domain.exceptions.exceptions import EmptyResponseError, ProviderError
from mapreducer.domain.result.response import InvokeOptions, ModelResponse, Usage
from mapreducer.core.retry.retry import retry_after_ms

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

# Status used for transport failures (timeouts, dropped connections), which are transient
CONNECTION_ERROR_STATUS = 503


class OpenAIChatModel:
    """
    LanguageModel implementation over OpenAI's chat completions API (or any compatible
    endpoint via base_url). Async by default.

    The SDK's own retries are disabled; retrying is the retry policy's job, and stacking
    the two would multiply requests against the rate limits.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.model_name: str = model_name
        self._api_key: str | None = api_key
        self._base_url: str | None = base_url
        self._timeout: float | None = timeout

    @cached_property
    def async_client(self) -> AsyncOpenAI:
        """
        Raw AsyncOpenAI client, created on first use.
        """
        from openai import AsyncOpenAI

        kwargs = {"api_key": self._get_api_key(), "max_retries": 0}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        return AsyncOpenAI(**kwargs)

    def _get_api_key(self) -> str:
        api_key = self._api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable not set.")
        return api_key

    async def invoke(self, prompt: str, options: InvokeOptions) -> ModelResponse:
        import openai

        start_time = time.time()
        try:
            result = await self.async_client.chat.completions.create(
                model=self.model_name,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=options.max_output_tokens,
                temperature=options.temperature,
            )
        except openai.APIStatusError as e:
            raise to_provider_error(e) from e
        except openai.APIConnectionError as e:
            raise ProviderError(CONNECTION_ERROR_STATUS, str(e)) from e

        duration = (time.time() - start_time) * 1000
        if not result.choices:
            raise EmptyResponseError(f"No choices returned by {self.model_name}")

        content = result.choices[0].message.content or ""
        usage = None
        if result.usage is not None:
            usage = Usage(
                input_tokens=result.usage.prompt_tokens,
                output_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        logger.debug(
            f"{self.model_name} answered in {duration:.0f} ms, usage: {usage}"
        )
        return ModelResponse(content=content, usage=usage)

    def __repr__(self) -> str:
        return f"OpenAIChatModel(model_name={self.model_name!r})"


def to_provider_error(error: BaseException) -> ProviderError:
    """
    Translate an SDK status error into a ProviderError, keeping any retry-after hint.
    """
    status = getattr(error, "status_code", None) or 500
    hint = retry_after_ms(error)
    return ProviderError(
        status,
        str(getattr(error, "message", error)),
        retry_after_seconds=hint / 1000 if hint is not None else None,
    )
