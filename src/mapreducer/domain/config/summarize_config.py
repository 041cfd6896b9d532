"""
Run configuration for a map-reduce summarization.

Every rate and budget parameter is required. A missing or out-of-range value is a
ConfigurationError raised before the run starts, never a failure mid-run.
"""

from __future__ import annotations
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from mapreducer.domain.exceptions.exceptions import ConfigurationError
import logging

logger = logging.getLogger(__name__)

Encoding = Literal["o200k", "cl100k"]


class SummarizeConfig(BaseModel):
    """
    Tunable limits for one summarization run.
    Time values are milliseconds; token values are per-request or per-window counts.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Rate ceilings
    tokens_per_minute: int = Field(
        ..., gt=0, description="Token budget per budget window (TPM)."
    )
    requests_per_minute: int = Field(
        ..., gt=0, description="Max requests started per queue interval (RPM)."
    )
    queue_concurrency: int = Field(..., gt=0, description="Max requests in flight.")
    queue_interval_ms: int = Field(
        ..., gt=0, description="Length of the request-rate interval."
    )
    token_budget_window_ms: int = Field(
        ..., gt=0, description="Length of the token budget window."
    )
    token_budget_timeout_ms: int = Field(
        ..., gt=0, description="Max wait for the token budget before the run aborts."
    )

    # Generation
    map_output_max_tokens: int = Field(..., gt=0)
    reduce_output_max_tokens: int = Field(..., gt=0)
    hierarchy_group_size: int = Field(..., ge=1)
    temperature: float = Field(..., ge=0.0, le=2.0)

    # Chunking
    chunk_tokens: int = Field(default=18000, gt=0)
    chunk_overlap_tokens: int = Field(default=500, ge=0)
    encoding: Encoding = "o200k"

    # Scheduling details
    max_retries: int = Field(default=7, ge=0)
    budget_poll_interval_ms: int = Field(default=3000, gt=0)
    run_timeout_ms: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _overlap_smaller_than_chunk(self) -> SummarizeConfig:
        if self.chunk_overlap_tokens >= self.chunk_tokens:
            raise ValueError(
                "chunk_overlap_tokens must be smaller than chunk_tokens"
            )
        return self

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> SummarizeConfig:
        """
        Validate a plain mapping, converting pydantic errors into a ConfigurationError
        that names every offending field.
        """
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "config"
                errors.append(f"{field}: {error['msg']}")
            logger.error(f"Invalid summarization config: {errors}")
            raise ConfigurationError("Invalid summarization config", errors) from e

    @classmethod
    def defaults(cls) -> SummarizeConfig:
        """
        Return a config with the stock limits (50k TPM, 50 RPM, one-minute windows).
        """
        return cls(**DEFAULTS)


DEFAULTS: dict[str, Any] = {
    "tokens_per_minute": 50000,
    "requests_per_minute": 50,
    "queue_concurrency": 5,
    "queue_interval_ms": 60_000,
    "token_budget_window_ms": 60_000,
    "token_budget_timeout_ms": 180_000,
    "map_output_max_tokens": 25000,
    "reduce_output_max_tokens": 35000,
    "hierarchy_group_size": 2,
    "temperature": 0.2,
    "chunk_tokens": 18000,
    "chunk_overlap_tokens": 500,
    "encoding": "o200k",
}
