"""
Unified response models for the chat gateway.
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class Usage(BaseModel):
    """Token usage reported by the provider."""
    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class CompletionResult(BaseModel):
    """
    Normalized result of one completed call.

    Only the first choice/candidate of a provider response is kept.
    `raw` holds the provider body untouched for debugging.
    """
    model_config = ConfigDict(frozen=True)

    text: str
    finish_reason: str
    model: str = ""
    requested_model: Optional[str] = None
    response_id: str = ""
    provider: str = ""
    usage: Usage = Field(default_factory=Usage)
    raw: Dict[str, Any] = Field(default_factory=dict)


class StreamChunk(BaseModel):
    """
    A partial completion delivered while streaming.

    Usage is only authoritative on the final chunk (`is_final=True`).
    """
    model_config = ConfigDict(frozen=True)

    index: int = 0
    text: str = ""
    is_final: bool = False
    finish_reason: Optional[str] = None
    model: str = ""
    response_id: str = ""
    provider: str = ""
    usage: Optional[Usage] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class TransportMetadata(BaseModel):
    """HTTP-level details of one exchange."""
    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    elapsed_ms: float = 0.0


class RawResponse(BaseModel):
    """Decoded provider body plus transport metadata."""
    model_config = ConfigDict(frozen=True)

    body: Any
    transport: TransportMetadata
