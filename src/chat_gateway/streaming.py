"""
Streaming support: wire framing and chunk consumption.

Providers stream either server-sent events (OpenAI, Anthropic, Mistral,
Perplexity) or newline-delimited JSON (Ollama). Both framings are decoded
into plain event dicts here; provider-specific StreamParser subclasses
turn those events into StreamChunks.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from .core.errors import DecodeError
from .models.response import CompletionResult, StreamChunk, Usage

logger = logging.getLogger(__name__)

SSE_DONE = "[DONE]"


@dataclass
class StreamEvent:
    """One decoded event from a provider stream."""
    data: Dict[str, Any]
    event: Optional[str] = None


def _decode(payload: str, provider: Optional[str]) -> Dict[str, Any]:
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise DecodeError(f"Malformed stream event: {e}", provider=provider, body=payload) from e
    if not isinstance(data, dict):
        raise DecodeError("Stream event is not a JSON object", provider=provider, body=payload)
    return data


async def iter_sse_events(
    lines: AsyncIterator[str],
    provider: Optional[str] = None,
) -> AsyncIterator[StreamEvent]:
    """
    Decode server-sent events from a line iterator.

    Events are dispatched on blank lines. Comment lines are ignored and
    the `[DONE]` sentinel ends the stream.
    """
    event_name: Optional[str] = None
    data_lines: List[str] = []

    async for line in lines:
        if not line:
            if data_lines:
                payload = "\n".join(data_lines)
                if payload == SSE_DONE:
                    return
                yield StreamEvent(data=_decode(payload, provider), event=event_name)
            event_name = None
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event_name = value
        elif field == "data":
            data_lines.append(value)

    if data_lines:
        payload = "\n".join(data_lines)
        if payload != SSE_DONE:
            yield StreamEvent(data=_decode(payload, provider), event=event_name)


async def iter_ndjson(
    lines: AsyncIterator[str],
    provider: Optional[str] = None,
) -> AsyncIterator[StreamEvent]:
    """Decode newline-delimited JSON objects from a line iterator."""
    async for line in lines:
        line = line.strip()
        if not line:
            continue
        yield StreamEvent(data=_decode(line, provider))


class StreamParser(ABC):
    """
    Turns decoded stream events of one call into StreamChunks.

    Exactly one final chunk is produced per stream. Usage on the final
    chunk is the last value the provider reported, never a sum over
    chunks.
    """

    def __init__(self, provider: str, requested_model: str):
        self.provider = provider
        self.requested_model = requested_model
        self.model = requested_model
        self.response_id = ""
        self.finish_reason: Optional[str] = None
        self.usage: Optional[Usage] = None
        self.done = False
        self._index = 0

    def _chunk(self, text: str = "", is_final: bool = False, raw: Optional[Dict[str, Any]] = None) -> StreamChunk:
        chunk = StreamChunk(
            index=self._index,
            text=text,
            is_final=is_final,
            finish_reason=self.finish_reason if is_final else None,
            model=self.model,
            response_id=self.response_id,
            provider=self.provider,
            usage=self.usage if is_final else None,
            raw=raw or {},
        )
        self._index += 1
        if is_final:
            self.done = True
        return chunk

    @abstractmethod
    def feed(self, event: StreamEvent) -> List[StreamChunk]:
        """Consume one event and return the chunks it produces."""
        pass

    def finish(self) -> StreamChunk:
        """
        Produce the final chunk once the transport has no more events.

        Raises:
            DecodeError: If the stream ended before the provider reported
                completion or without reporting usage
        """
        if self.finish_reason is None:
            raise DecodeError("Stream ended before completion", provider=self.provider)
        if self.usage is None:
            raise DecodeError("Stream ended without usage", provider=self.provider)
        return self._chunk(is_final=True)


async def collect_stream(
    chunks: AsyncIterator[StreamChunk],
    requested_model: Optional[str] = None,
) -> CompletionResult:
    """
    Drain a chunk stream into a single CompletionResult.

    Text is concatenated in arrival order; usage, finish reason and model
    come from the final chunk.

    Raises:
        DecodeError: If there is no final chunk or it carries no usage
    """
    parts: List[str] = []
    final: Optional[StreamChunk] = None

    try:
        async for chunk in chunks:
            parts.append(chunk.text)
            if chunk.is_final:
                final = chunk
                break
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    if final is None:
        raise DecodeError("Stream ended without a final chunk")

    if final.usage is None:
        raise DecodeError("Final chunk carries no usage", provider=final.provider or None)

    return CompletionResult(
        text="".join(parts),
        finish_reason=final.finish_reason or "stop",
        model=final.model,
        requested_model=requested_model,
        response_id=final.response_id,
        provider=final.provider,
        usage=final.usage,
    )
