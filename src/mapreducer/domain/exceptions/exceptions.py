class MapReduceError(Exception):
    """Base class for all mapreducer-related exceptions."""

    pass


class ConfigurationError(MapReduceError):
    """
    Raised for missing or out-of-range run parameters.
    Always surfaced before any remote call is made.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors: list[str] = errors or []
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)


class ImpossibleEstimateError(ConfigurationError):
    """
    A single request's token estimate exceeds the whole token budget, so it can never be admitted.
    """

    def __init__(
        self,
        phase: str,
        estimate: int,
        capacity: int,
        segment_index: int | None = None,
    ):
        self.phase: str = phase
        self.estimate: int = estimate
        self.capacity: int = capacity
        self.segment_index: int | None = segment_index
        where = f" (segment {segment_index + 1})" if segment_index is not None else ""
        super().__init__(
            f"{phase} token estimate {estimate}{where} exceeds the token budget of {capacity} per window"
        )


class BudgetTimeoutError(MapReduceError):
    """The token budget did not free up within the configured timeout. Fatal for the run."""

    def __init__(
        self,
        needed: int,
        remaining: int,
        timeout_ms: int,
        phase: str | None = None,
        segment_index: int | None = None,
    ):
        self.needed: int = needed
        self.remaining: int = remaining
        self.timeout_ms: int = timeout_ms
        self.phase: str | None = phase
        self.segment_index: int | None = segment_index
        super().__init__(
            f"Token budget timeout after {timeout_ms / 1000:g} seconds: "
            f"need {needed}, have {remaining}"
        )

    def with_context(self, phase: str, segment_index: int | None = None) -> "BudgetTimeoutError":
        """Return a copy tagged with the phase (and segment) that was waiting."""
        return BudgetTimeoutError(
            self.needed, self.remaining, self.timeout_ms, phase, segment_index
        )


class ProviderError(MapReduceError):
    """
    Error returned by the remote language model, exposing an HTTP-like status.
    429 and 5xx are transient and retried; everything else is fatal for the call.
    """

    def __init__(
        self,
        status: int,
        message: str = "",
        retry_after_seconds: float | None = None,
    ):
        self.status: int = status
        self.retry_after_seconds: float | None = retry_after_seconds
        super().__init__(f"Provider returned status {status}: {message}".rstrip(": "))


class EmptyResponseError(MapReduceError):
    """The model returned no usable content."""

    pass


class RetryExhaustedError(MapReduceError):
    """All retry attempts failed. The last underlying error is kept as `last_error`."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts: int = attempts
        self.last_error: BaseException = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")

    @property
    def status(self) -> int | None:
        return getattr(self.last_error, "status", None)


class SegmentFailure(MapReduceError):
    """A single map-phase segment could not be processed. Recovered by skipping it."""

    def __init__(self, segment_index: int, cause: BaseException):
        self.segment_index: int = segment_index
        self.cause: BaseException = cause
        super().__init__(f"Segment {segment_index + 1} failed: {cause}")


class NoSegmentsSucceededError(MapReduceError):
    """Every segment of the map phase failed."""

    def __init__(self, total: int, failures: list[SegmentFailure] | None = None):
        self.total: int = total
        self.failures: list[SegmentFailure] = failures or []
        super().__init__(
            f"No segments succeeded in MAP phase ({total} attempted)"
        )


class ReduceFailure(MapReduceError):
    """A reduce-phase group call failed. Fatal for the run."""

    def __init__(self, round_number: int, group_items: int, cause: BaseException):
        self.round_number: int = round_number
        self.group_items: int = group_items
        self.cause: BaseException = cause
        super().__init__(
            f"REDUCE round {round_number} failed on a group of {group_items} items: {cause}"
        )


class RunCancelledError(MapReduceError):
    """The run exceeded its run-level timeout; in-flight calls were abandoned."""

    def __init__(self, timeout_ms: int, phase: str):
        self.timeout_ms: int = timeout_ms
        self.phase: str = phase
        super().__init__(
            f"Run cancelled during {phase} after {timeout_ms / 1000:g} seconds"
        )
