from mapreducer.core.budget.token_tracker import TokenBudgetTracker
from mapreducer.core.queue.job_queue import JobQueue
from mapreducer.core.reduce.hierarchical import hierarchical_reduce
from mapreducer.core.retry.retry import with_retry
from mapreducer.domain.config.summarize_config import SummarizeConfig
from mapreducer.strategies.summarize.summarizers.map_reduce import (
    MapReduceSummarizer,
    summarize,
)

__all__ = [
    "JobQueue",
    "MapReduceSummarizer",
    "SummarizeConfig",
    "TokenBudgetTracker",
    "hierarchical_reduce",
    "summarize",
    "with_retry",
]
