"""
Unified request models for the chat gateway.
"""

from typing import Optional, List, Dict, Any, Literal, Mapping
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Media(BaseModel):
    """Image attached to a message, by URL or base64 payload."""
    model_config = ConfigDict(frozen=True)

    mime_type: str = "image/png"
    url: Optional[str] = None
    data: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "Media":
        if (self.url is None) == (self.data is None):
            raise ValueError("Media requires exactly one of url or data")
        return self

    def as_data_url(self) -> str:
        """Return a URL usable by providers that accept data URLs."""
        if self.url is not None:
            return self.url
        return f"data:{self.mime_type};base64,{self.data}"


class ChatMessage(BaseModel):
    """
    A single conversation message.

    Immutable once constructed. An ordered list of messages forms a
    conversation.
    """
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str
    media: Optional[Media] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str, media: Optional[Media] = None) -> "ChatMessage":
        return cls(role="user", content=content, media=media)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role="assistant", content=content)


class GenerationOptions(BaseModel):
    """
    Generation parameters for one call.

    Every field is optional; unset fields fall back to the provider
    configuration and then to the provider's own defaults.
    """
    model_config = ConfigDict(frozen=True)

    model: Optional[str] = Field(default=None, description="Model identifier")
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    top_k: Optional[int] = Field(default=None, ge=1)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    stop: Optional[List[str]] = None
    seed: Optional[int] = None
    logit_bias: Optional[Dict[str, int]] = None
    presence_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    response_format: Optional[Dict[str, Any]] = None

    # Provider-specific knobs, forwarded only to providers that declare them
    extras: Dict[str, Any] = Field(default_factory=dict)

    # Per-call HTTP headers and timeout (seconds)
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "GenerationOptions":
        """Build options from a configuration mapping."""
        return cls.model_validate(dict(data or {}))

    def merged_with(self, defaults: "GenerationOptions") -> "GenerationOptions":
        """
        Combine with lower-priority defaults.

        Values set on this object win; extras and headers are merged key by key.
        """
        values = defaults.model_dump(exclude_none=True, exclude={"extras", "headers"})
        values.update(self.model_dump(exclude_none=True, exclude={"extras", "headers"}))
        values["extras"] = {**defaults.extras, **self.extras}
        values["headers"] = {**defaults.headers, **self.headers}
        return GenerationOptions.model_validate(values)

    def is_set(self, name: str) -> bool:
        value = getattr(self, name)
        if isinstance(value, (list, dict)):
            return bool(value)
        return value is not None
