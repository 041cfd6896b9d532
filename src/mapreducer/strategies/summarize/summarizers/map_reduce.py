"""
Rate-limited map-reduce summarization.

MAP: every segment is rendered into the map prompt and sent as one call. Segments start
in input order but may finish out of order; partial summaries are put back in segment
order before reducing. A segment that fails (retries exhausted, empty answer) is skipped.

REDUCE: the partial summaries are combined by hierarchical_reduce, each group making the
same estimate -> admit -> queue -> retry -> record trip as a map call. Any reduce failure
is fatal, since no subset of a reduction can be dropped.

Every call is admitted twice: first by the token budget tracker (tokens per window),
then by the job queue (concurrency and requests per interval). A token budget timeout
aborts the whole run in either phase.
"""

from __future__ import annotations
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import override
import asyncio
import logging

from mapreducer.core.budget.token_tracker import TokenBudgetTracker
from mapreducer.core.model.protocol import LanguageModel
from mapreducer.core.model.tokens import TokenCounter, token_counter_for
from mapreducer.core.prompt.prompt import (
    DEFAULT_COMBINE_PROMPT,
    DEFAULT_MAP_PROMPT,
    Prompt,
)
from mapreducer.core.queue.job_queue import JobQueue
from mapreducer.core.reduce.hierarchical import hierarchical_reduce, join_texts
from mapreducer.core.retry.retry import with_retry
from mapreducer.domain.config.summarize_config import SummarizeConfig
from mapreducer.domain.exceptions.exceptions import (
    BudgetTimeoutError,
    EmptyResponseError,
    ImpossibleEstimateError,
    NoSegmentsSucceededError,
    ReduceFailure,
    RunCancelledError,
    SegmentFailure,
)
from mapreducer.domain.result.response import InvokeOptions, ModelResponse
from mapreducer.strategies.summarize.strategy import SummarizationStrategy
from mapreducer.strategies.summarize.summarizers.chunker import Chunker, Segment
from mapreducer.utils.concurrency.gather import gather_or_cancel

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    MAPPING = "mapping"
    REDUCING = "reducing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunStats:
    segments_total: int = 0
    segments_succeeded: int = 0
    skipped_segments: list[int] = field(default_factory=list)
    reduce_rounds: int = 0
    combine_calls: int = 0
    model_calls: int = 0
    tokens_recorded: int = 0


@dataclass
class _MapJob:
    segment: Segment
    prompt: str
    estimate: int


@dataclass
class _Run:
    """Per-run scheduling state. Never shared between runs."""

    tracker: TokenBudgetTracker
    queue: JobQueue
    admission: asyncio.Lock = field(default_factory=asyncio.Lock)


class MapReduceSummarizer(SummarizationStrategy):
    """
    Summarizes arbitrarily long text against a rate-limited model.

    Each call to `__call__` / `summarize_segments` builds its own token tracker and job
    queue from the config. `state` and `stats` describe the current (or most recent)
    run, so an instance runs one summarization at a time; use one summarizer per
    concurrent run.
    """

    def __init__(
        self,
        model: LanguageModel,
        config: SummarizeConfig,
        map_prompt: str | Prompt = DEFAULT_MAP_PROMPT,
        combine_prompt: str | Prompt = DEFAULT_COMBINE_PROMPT,
        token_counter: TokenCounter | None = None,
        chunker: Chunker | None = None,
    ):
        self.model: LanguageModel = model
        self.config: SummarizeConfig = config
        self.map_prompt: Prompt = _as_prompt(map_prompt)
        self.combine_prompt: Prompt = _as_prompt(combine_prompt)
        self._token_counter: TokenCounter | None = token_counter
        self._chunker: Chunker | None = chunker
        self.state: RunState = RunState.IDLE
        self.stats: RunStats = RunStats()
        self._active: bool = False

    @property
    def token_counter(self) -> TokenCounter:
        if self._token_counter is None:
            self._token_counter = token_counter_for(self.config.encoding)
        return self._token_counter

    @property
    def chunker(self) -> Chunker:
        if self._chunker is None:
            self._chunker = Chunker(
                chunk_tokens=self.config.chunk_tokens,
                overlap_tokens=self.config.chunk_overlap_tokens,
                encoding=self.config.encoding,
                token_counter=self.token_counter,
            )
        return self._chunker

    @override
    async def __call__(self, text: str, **kwargs) -> str:
        segments = self.chunker(text)
        return await self.summarize_segments(segments)

    async def summarize_segments(self, segments: Sequence[Segment | str]) -> str:
        """
        Run the map and reduce phases over already-split segments.
        Returns the single fully reduced text.
        """
        if self._active:
            raise RuntimeError(
                "This summarizer is already running; create one per concurrent run"
            )
        self._active = True
        try:
            return await self._summarize(segments)
        finally:
            self._active = False

    async def _summarize(self, segments: Sequence[Segment | str]) -> str:
        self.state = RunState.IDLE
        self.stats = RunStats()
        docs = self._as_segments(segments)
        logger.info(f"Starting MAP-REDUCE with {len(docs)} segments")

        timeout_ms = self.config.run_timeout_ms
        try:
            async with asyncio.timeout(
                timeout_ms / 1000 if timeout_ms else None
            ) as deadline:
                result = await self._run(docs)
        except TimeoutError as e:
            failed_phase = self.state.value
            self.state = RunState.FAILED
            if deadline.expired():
                logger.error(f"Run timed out during {failed_phase}")
                raise RunCancelledError(timeout_ms or 0, failed_phase) from e
            raise
        except BaseException:
            self.state = RunState.FAILED
            raise

        self.state = RunState.DONE
        logger.info(
            f"MAP-REDUCE completed: {self.stats.model_calls} model calls, "
            f"{self.stats.tokens_recorded} tokens recorded"
        )
        return result

    async def _run(self, docs: list[Segment]) -> str:
        cfg = self.config
        run = _Run(
            tracker=TokenBudgetTracker(cfg.tokens_per_minute, cfg.token_budget_window_ms),
            queue=JobQueue(
                cfg.queue_concurrency, cfg.queue_interval_ms, cfg.requests_per_minute
            ),
        )

        self.state = RunState.MAPPING
        partials = await self._map_phase(run, docs)

        self.state = RunState.REDUCING
        logger.info(f"Starting REDUCE phase with {len(partials)} partial summaries")

        async def combine(group: list[str]) -> str:
            return await self._combine(run, group)

        final = await hierarchical_reduce(
            partials, combine, cfg.hierarchy_group_size, on_round=self._on_round
        )
        return final.strip()

    # MAP
    async def _map_phase(self, run: _Run, docs: list[Segment]) -> list[str]:
        self.stats.segments_total = len(docs)
        if not docs:
            raise NoSegmentsSucceededError(0)

        # Every estimate is checked before the first call goes out
        jobs: list[_MapJob] = []
        for doc in docs:
            if not doc.text.strip():
                logger.warning(f"Skipping segment {doc.index + 1}: no text")
                self.stats.skipped_segments.append(doc.index)
                continue
            prompt = self.map_prompt.render({"text": doc.text})
            estimate = self._estimate(prompt, self.config.map_output_max_tokens)
            logger.debug(
                f"MAP segment {doc.index + 1}: input={doc.token_count} tokens, "
                f"estimated={estimate} tokens"
            )
            if estimate > self.config.tokens_per_minute:
                raise ImpossibleEstimateError(
                    "MAP", estimate, self.config.tokens_per_minute, doc.index
                )
            jobs.append(_MapJob(segment=doc, prompt=prompt, estimate=estimate))

        failures: list[SegmentFailure] = []

        async def map_one(job: _MapJob) -> str | None:
            index = job.segment.index
            try:
                return await self._call(
                    run,
                    "MAP",
                    job.prompt,
                    job.estimate,
                    self.config.map_output_max_tokens,
                    segment_index=index,
                )
            except (BudgetTimeoutError, ImpossibleEstimateError):
                raise
            except Exception as e:
                failure = SegmentFailure(index, e)
                failures.append(failure)
                self.stats.skipped_segments.append(index)
                logger.warning(f"{failure}; skipping, continuing with remaining segments")
                return None

        results = await gather_or_cancel(map_one(job) for job in jobs)
        partials = [r for r in results if r]

        if not partials:
            logger.error("No segments were successfully processed in MAP phase")
            raise NoSegmentsSucceededError(len(docs), failures)

        self.stats.segments_succeeded = len(partials)
        self.stats.skipped_segments.sort()
        logger.info(
            f"MAP phase completed: {len(partials)}/{len(docs)} segments processed"
        )
        return partials

    # REDUCE
    async def _combine(self, run: _Run, group: list[str]) -> str:
        joined = join_texts(group)
        if not joined.strip():
            raise ReduceFailure(
                self.stats.reduce_rounds,
                len(group),
                ValueError("Empty text provided for reduce operation"),
            )
        prompt = self.combine_prompt.render({"text": joined})
        estimate = self._estimate(prompt, self.config.reduce_output_max_tokens)
        logger.debug(f"REDUCE: {len(group)} items, estimated={estimate} tokens")
        if estimate > self.config.tokens_per_minute:
            raise ImpossibleEstimateError(
                "REDUCE", estimate, self.config.tokens_per_minute
            )

        self.stats.combine_calls += 1
        try:
            return await self._call(
                run, "REDUCE", prompt, estimate, self.config.reduce_output_max_tokens
            )
        except BudgetTimeoutError:
            raise
        except Exception as e:
            logger.error(f"Reduce job failed: {e}")
            raise ReduceFailure(self.stats.reduce_rounds, len(group), e) from e

    def _on_round(self, round_number: int, groups: list[list[str]]) -> None:
        self.stats.reduce_rounds = round_number
        logger.info(
            f"REDUCE round {round_number}: {len(groups)} group(s) of sizes "
            f"{[len(g) for g in groups]}"
        )

    # Shared admission path
    async def _call(
        self,
        run: _Run,
        phase: str,
        prompt: str,
        estimate: int,
        max_output_tokens: int,
        segment_index: int | None = None,
    ) -> str:
        label = f"{phase} segment {segment_index + 1}" if segment_index is not None else phase

        # Budget admission is serialized so calls are admitted in submission order
        async with run.admission:
            try:
                await run.tracker.wait_for_budget(
                    estimate,
                    self.config.token_budget_timeout_ms,
                    self.config.budget_poll_interval_ms,
                )
            except BudgetTimeoutError as e:
                logger.error(f"[{label}] {e}")
                raise e.with_context(phase, segment_index) from None

        logger.info(f"{label} admitted (est ~{estimate} tokens)")
        options = InvokeOptions(
            max_output_tokens=max_output_tokens,
            temperature=self.config.temperature,
        )

        async def attempt() -> ModelResponse:
            # Each attempt takes its own queue slot; backoff happens outside the queue
            return await run.queue.submit(lambda: self._invoke(prompt, options, label))

        try:
            response = await with_retry(attempt, self.config.max_retries)
        except BaseException:
            run.tracker.release(estimate)
            raise

        recorded = run.tracker.settle(estimate, response.used_tokens)
        self.stats.tokens_recorded += recorded
        logger.debug(f"[{label}] Used {recorded} tokens - completed successfully")
        return response.content.strip()

    async def _invoke(
        self, prompt: str, options: InvokeOptions, label: str
    ) -> ModelResponse:
        self.stats.model_calls += 1
        response = await self.model.invoke(prompt, options)
        if not response.content or not response.content.strip():
            raise EmptyResponseError(f"Empty response from model for {label}")
        return response

    # Helpers
    def _estimate(self, prompt: str, output_cap: int) -> int:
        return self.token_counter(prompt) + output_cap

    def _as_segments(self, segments: Sequence[Segment | str]) -> list[Segment]:
        docs: list[Segment] = []
        for i, segment in enumerate(segments):
            if isinstance(segment, Segment):
                docs.append(segment)
            else:
                docs.append(
                    Segment(index=i, text=segment, token_count=self.token_counter(segment))
                )
        return docs


def _as_prompt(prompt: str | Prompt) -> Prompt:
    if isinstance(prompt, Prompt):
        return prompt.require("text")
    return Prompt(prompt).require("text")


async def summarize(
    text: str,
    model: LanguageModel,
    config: SummarizeConfig | None = None,
    **kwargs,
) -> str:
    """
    Convenience wrapper: chunk `text` and run a fresh MapReduceSummarizer over it.
    """
    summarizer = MapReduceSummarizer(
        model=model, config=config or SummarizeConfig.defaults(), **kwargs
    )
    return await summarizer(text)
