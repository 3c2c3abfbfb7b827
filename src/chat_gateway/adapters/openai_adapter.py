"""
Direct OpenAI API adapter.

Also provides the OpenAI-compatible base used by vendors that expose the
same chat-completions schema (Mistral, Perplexity).
"""

import logging
from typing import Any, Dict, List

from ..core.errors import DecodeError, ProviderError
from ..core.interface import AbstractProvider, ProviderCapability, ProviderKind
from ..models.request import ChatMessage, GenerationOptions
from ..models.response import CompletionResult, RawResponse, StreamChunk, Usage
from ..streaming import StreamEvent, StreamParser

logger = logging.getLogger(__name__)


class OpenAIStreamParser(StreamParser):
    """
    Parser for chat.completion.chunk events.

    The finish reason arrives on the last content chunk; usage may arrive
    on every chunk (Perplexity), on the last one (Mistral) or on a
    trailing chunk with no choices (OpenAI with include_usage). The last
    reported usage wins.
    """

    def feed(self, event: StreamEvent) -> List[StreamChunk]:
        data = event.data
        if "error" in data:
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ProviderError(f"Stream error: {message}", provider=self.provider, body=data)

        self.response_id = data.get("id") or self.response_id
        self.model = data.get("model") or self.model

        usage = data.get("usage")
        if usage:
            self.usage = Usage(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
            )

        chunks = []
        choices = data.get("choices") or []
        if choices:
            choice = choices[0]
            if choice.get("finish_reason"):
                self.finish_reason = choice["finish_reason"]
            text = (choice.get("delta") or {}).get("content")
            if text:
                chunks.append(self._chunk(text, raw=data))
        return chunks


class OpenAICompatibleProvider(AbstractProvider):
    """
    Shared implementation of the OpenAI chat-completions wire schema.

    System messages stay inline in the message list. Subclasses adjust
    capabilities, paths and field names.
    """

    COMPLETIONS_PATH = "/v1/chat/completions"
    MODELS_PATH = "/v1/models"
    SEED_FIELD = "seed"
    INCLUDE_STREAM_USAGE = False

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
        }
        headers.update(self._config.headers)
        return headers

    def _image_part(self, message: ChatMessage) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": message.media.as_data_url()}}

    def _message(self, message: ChatMessage) -> Dict[str, Any]:
        if message.media is None:
            return {"role": message.role, "content": message.content}
        return {
            "role": message.role,
            "content": [
                {"type": "text", "text": message.content},
                self._image_part(message),
            ],
        }

    def _build_payload(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": [self._message(m) for m in messages],
            "stream": stream,
        }

        for field in ("temperature", "max_tokens", "top_p"):
            value = getattr(options, field)
            if value is not None:
                payload[field] = value

        omitted = []
        if options.stop:
            payload["stop"] = list(options.stop)
        if options.logit_bias:
            payload["logit_bias"] = dict(options.logit_bias)
        if options.response_format:
            payload["response_format"] = dict(options.response_format)

        if self.supports(ProviderCapability.TOP_K):
            if options.top_k is not None:
                payload["top_k"] = options.top_k
        else:
            omitted.append("top_k")

        if self.supports(ProviderCapability.SEED):
            if options.seed is not None:
                payload[self.SEED_FIELD] = options.seed
        else:
            omitted.append("seed")

        if self.supports(ProviderCapability.PENALTIES):
            if options.presence_penalty is not None:
                payload["presence_penalty"] = options.presence_penalty
            if options.frequency_penalty is not None:
                payload["frequency_penalty"] = options.frequency_penalty
        else:
            omitted.extend(["presence_penalty", "frequency_penalty"])

        self._omitted(options, *omitted)
        payload.update(self._extras(options))

        if stream and self.INCLUDE_STREAM_USAGE:
            payload["stream_options"] = {"include_usage": True}

        return payload

    def parse_response(self, raw: RawResponse, requested_model: str) -> CompletionResult:
        body = raw.body
        choices = body.get("choices")
        if not choices:
            raise DecodeError("Response has no choices", provider=self._name, body=body)

        choice = choices[0]
        finish_reason = choice.get("finish_reason")
        if finish_reason is None:
            raise DecodeError("Response has no finish reason", provider=self._name, body=body)

        usage = body.get("usage")
        if usage is None:
            raise DecodeError("Response has no usage", provider=self._name, body=body)

        message = choice.get("message") or {}
        return CompletionResult(
            text=message.get("content") or "",
            finish_reason=finish_reason,
            model=body.get("model") or requested_model,
            requested_model=requested_model,
            response_id=body.get("id", ""),
            provider=self._name,
            usage=Usage(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
            ),
            raw=body,
        )

    def stream_parser(self, requested_model: str) -> StreamParser:
        return OpenAIStreamParser(self._name, requested_model)


class OpenAIAdapter(OpenAICompatibleProvider):
    """
    Direct OpenAI API adapter.

    Supports stop sequences, logit bias, seeds and penalties; top-k is
    not part of the schema and is omitted.
    """

    KIND = ProviderKind.OPENAI
    CAPABILITIES = frozenset({
        ProviderCapability.STREAMING,
        ProviderCapability.STOP_SEQUENCES,
        ProviderCapability.LOGIT_BIAS,
        ProviderCapability.SEED,
        ProviderCapability.PENALTIES,
        ProviderCapability.VISION,
        ProviderCapability.JSON_MODE,
    })
    DEFAULT_BASE_URL = "https://api.openai.com"
    DEFAULT_MODEL = "gpt-4o-mini"
    INCLUDE_STREAM_USAGE = True
    EXTRA_KEYS = frozenset({"user", "service_tier"})

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self._config.organization:
            headers["OpenAI-Organization"] = self._config.organization
        if self._config.project:
            headers["OpenAI-Project"] = self._config.project
        return headers

    def _provider_metadata(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "object": body.get("object"),
            "created": body.get("created"),
            "system_fingerprint": body.get("system_fingerprint"),
        }
