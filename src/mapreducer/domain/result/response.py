from __future__ import annotations
from pydantic import BaseModel, Field
import logging

logger = logging.getLogger(__name__)


class Usage(BaseModel):
    """
    Token usage reported by the provider. Every field is optional; providers report
    different subsets.
    """

    input_tokens: int | None = Field(default=None, ge=0)
    output_tokens: int | None = Field(default=None, ge=0)
    total_tokens: int | None = Field(default=None, ge=0)

    def used_tokens(self) -> int | None:
        """
        Tokens consumed by the call: input + output if both are known, else total,
        else None (caller falls back to its own estimate).
        """
        if self.input_tokens is not None and self.output_tokens is not None:
            return self.input_tokens + self.output_tokens
        return self.total_tokens


class InvokeOptions(BaseModel):
    max_output_tokens: int = Field(..., gt=0)
    temperature: float = Field(..., ge=0.0, le=2.0)


class ModelResponse(BaseModel):
    content: str
    usage: Usage | None = None

    @property
    def used_tokens(self) -> int | None:
        if self.usage is None:
            return None
        return self.usage.used_tokens()
