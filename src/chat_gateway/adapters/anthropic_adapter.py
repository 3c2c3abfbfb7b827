"""
Direct Anthropic API adapter.

Anthropic's Messages API takes the system prompt as a separate top-level
field rather than as a message, requires max_tokens, and streams typed
server-sent events.
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.errors import DecodeError, ProviderError
from ..core.interface import AbstractProvider, ProviderCapability, ProviderKind
from ..models.request import ChatMessage, GenerationOptions
from ..models.response import CompletionResult, RawResponse, StreamChunk, Usage
from ..streaming import StreamEvent, StreamParser

logger = logging.getLogger(__name__)


class AnthropicStreamParser(StreamParser):
    """
    Parser for Anthropic message stream events.

    Input tokens are reported once on message_start; output tokens on
    message_delta are cumulative, so the last value is kept.
    """

    def __init__(self, provider: str, requested_model: str):
        super().__init__(provider, requested_model)
        self._input_tokens = 0
        self._output_tokens = 0
        self.stop_sequence: Optional[str] = None

    def _update_usage(self, usage: Dict[str, Any]) -> None:
        if usage.get("input_tokens") is not None:
            self._input_tokens = usage["input_tokens"]
        if usage.get("output_tokens") is not None:
            self._output_tokens = usage["output_tokens"]
        self.usage = Usage(input_tokens=self._input_tokens, output_tokens=self._output_tokens)

    def feed(self, event: StreamEvent) -> List[StreamChunk]:
        data = event.data
        event_type = data.get("type") or event.event

        if event_type == "message_start":
            message = data.get("message") or {}
            self.response_id = message.get("id") or self.response_id
            self.model = message.get("model") or self.model
            self._update_usage(message.get("usage") or {})

        elif event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                return [self._chunk(delta["text"], raw=data)]

        elif event_type == "message_delta":
            delta = data.get("delta") or {}
            if delta.get("stop_reason"):
                self.finish_reason = delta["stop_reason"]
            self.stop_sequence = delta.get("stop_sequence")
            self._update_usage(data.get("usage") or {})

        elif event_type == "message_stop":
            if self.finish_reason is None:
                raise DecodeError("message_stop without stop_reason", provider=self.provider, body=data)
            return [self._chunk(is_final=True, raw=data)]

        elif event_type == "error":
            error = data.get("error") or {}
            raise ProviderError(
                f"Stream error: {error.get('type', 'error')} - {error.get('message', '')}",
                provider=self.provider,
                body=data,
            )

        return []


class AnthropicAdapter(AbstractProvider):
    """
    Direct Anthropic API adapter.

    Supports stop sequences and top-k; logit bias is rejected and
    seeds/penalties are omitted since the schema has no slot for them.
    """

    KIND = ProviderKind.ANTHROPIC
    CAPABILITIES = frozenset({
        ProviderCapability.STREAMING,
        ProviderCapability.STOP_SEQUENCES,
        ProviderCapability.TOP_K,
        ProviderCapability.SEPARATE_SYSTEM_PROMPT,
        ProviderCapability.VISION,
    })
    DEFAULT_BASE_URL = "https://api.anthropic.com"
    DEFAULT_MODEL = "claude-3-5-sonnet-latest"
    COMPLETIONS_PATH = "/v1/messages"
    ANTHROPIC_VERSION = "2023-06-01"
    DEFAULT_MAX_TOKENS = 500
    EXTRA_KEYS = frozenset({"metadata"})

    # Anthropic has no stable models endpoint for all key types
    KNOWN_MODELS = [
        {"id": "claude-3-5-sonnet-latest", "max_tokens": 8192, "context_window": 200000},
        {"id": "claude-3-opus-20240229", "max_tokens": 4096, "context_window": 200000},
        {"id": "claude-3-sonnet-20240229", "max_tokens": 4096, "context_window": 200000},
        {"id": "claude-3-haiku-20240307", "max_tokens": 4096, "context_window": 200000},
    ]

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._config.api_key or "",
            "anthropic-version": self._config.api_version or self.ANTHROPIC_VERSION,
        }
        if self._config.beta_version:
            headers["anthropic-beta"] = self._config.beta_version
        headers.update(self._config.headers)
        return headers

    def _message(self, message: ChatMessage) -> Dict[str, Any]:
        if message.media is None:
            return {"role": message.role, "content": message.content}

        media = message.media
        if media.url is not None:
            source = {"type": "url", "url": media.url}
        else:
            source = {"type": "base64", "media_type": media.mime_type, "data": media.data}
        return {
            "role": message.role,
            "content": [
                {"type": "image", "source": source},
                {"type": "text", "text": message.content},
            ],
        }

    def _build_payload(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        system = None
        conversation = []
        for m in messages:
            if m.role == "system":
                system = m.content
            else:
                conversation.append(self._message(m))

        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": conversation,
            "max_tokens": options.max_tokens or self.DEFAULT_MAX_TOKENS,
            "stream": stream,
        }

        if system:
            payload["system"] = system
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.top_k is not None:
            payload["top_k"] = options.top_k
        if options.stop:
            payload["stop_sequences"] = list(options.stop)

        self._omitted(options, "seed", "presence_penalty", "frequency_penalty")
        payload.update(self._extras(options))
        return payload

    def parse_response(self, raw: RawResponse, requested_model: str) -> CompletionResult:
        body = raw.body
        content = body.get("content")
        if content is None:
            raise DecodeError("Response has no content", provider=self._name, body=body)

        stop_reason = body.get("stop_reason")
        if stop_reason is None:
            raise DecodeError("Response has no stop_reason", provider=self._name, body=body)

        usage = body.get("usage")
        if usage is None:
            raise DecodeError("Response has no usage", provider=self._name, body=body)

        text = "".join(block.get("text", "") for block in content if block.get("type") == "text")
        return CompletionResult(
            text=text,
            finish_reason=stop_reason,
            model=body.get("model") or requested_model,
            requested_model=requested_model,
            response_id=body.get("id", ""),
            provider=self._name,
            usage=Usage(
                input_tokens=usage.get("input_tokens") or 0,
                output_tokens=usage.get("output_tokens") or 0,
            ),
            raw=body,
        )

    def stream_parser(self, requested_model: str) -> StreamParser:
        return AnthropicStreamParser(self._name, requested_model)

    def _provider_metadata(self, body: Dict[str, Any]) -> Dict[str, Any]:
        usage = body.get("usage") or {}
        metadata = {
            "type": body.get("type"),
            "role": body.get("role"),
            "stop_sequence": body.get("stop_sequence"),
        }
        for key in ("cache_creation_input_tokens", "cache_read_input_tokens"):
            if usage.get(key) is not None:
                metadata[key] = usage[key]
        return metadata

    async def list_models(self) -> List[Dict[str, Any]]:
        """
        List known Anthropic models.

        Returns a fixed catalogue with output-token limits and context
        windows; no request is made.
        """
        return [dict(m) for m in self.KNOWN_MODELS]

    async def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": self._config.api_key is not None,
            "provider": self._name,
            "note": "No dedicated health endpoint",
        }
