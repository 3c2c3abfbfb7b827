"""
Abstract provider interface definition.

Defines the contract that all provider adapters implement: build a
vendor payload, invoke the vendor endpoint, and normalize the response.
Provider differences are declared as capability flags per variant.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

import httpx
from pydantic import ValidationError

from .config import ProviderConfig
from .errors import (
    AuthenticationError,
    DecodeError,
    GatewayError,
    InvalidRequestError,
    UnsupportedOptionError,
)
from .transport import WireClient
from ..models.request import ChatMessage, GenerationOptions
from ..models.response import CompletionResult, RawResponse, StreamChunk
from ..metadata import RateTable, build_metadata
from ..streaming import StreamEvent, StreamParser, iter_ndjson, iter_sse_events

logger = logging.getLogger(__name__)

MessageInput = Union[ChatMessage, Dict[str, Any]]


class ProviderKind(str, Enum):
    """Supported provider variants."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    MISTRAL = "mistral"
    PERPLEXITY = "perplexity"


class ProviderCapability(str, Enum):
    """Capabilities that a provider may support."""
    STREAMING = "streaming"
    STOP_SEQUENCES = "stop_sequences"
    LOGIT_BIAS = "logit_bias"
    TOP_K = "top_k"
    SEED = "seed"
    PENALTIES = "penalties"
    SEPARATE_SYSTEM_PROMPT = "separate_system_prompt"
    SYSTEM_FIRST = "system_first"
    HARDWARE_OPTIONS = "hardware_options"
    VISION = "vision"
    JSON_MODE = "json_mode"
    TIMING_METRICS = "timing_metrics"
    SEARCH_CITATIONS = "search_citations"


def coerce_messages(messages: Iterable[MessageInput]) -> List[ChatMessage]:
    """Accept ChatMessage objects or plain {role, content} dicts."""
    try:
        return [
            m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
            for m in messages
        ]
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid message: {e}") from e


class AbstractProvider(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses declare their variant, capabilities and defaults as class
    attributes and implement payload building and response parsing.
    Transport, validation and the public operations live here.
    """

    KIND: ProviderKind
    CAPABILITIES: FrozenSet[ProviderCapability] = frozenset()
    DEFAULT_BASE_URL: str = ""
    DEFAULT_MODEL: str = ""
    COMPLETIONS_PATH: str = ""
    MODELS_PATH: Optional[str] = None
    STREAM_FRAMING: str = "sse"
    REQUIRES_API_KEY: bool = True
    EXTRA_KEYS: FrozenSet[str] = frozenset()

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            config: Immutable provider configuration
            transport: Optional httpx transport handed to the wire client
        """
        self._config = config
        self._name = config.name
        self._base_url = (config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._completions_path = config.completions_path or self.COMPLETIONS_PATH
        try:
            self._defaults = GenerationOptions.from_mapping(config.default_options)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid default options: {e}", provider=config.name) from e
        self._transport = transport
        self._client: Optional[WireClient] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> ProviderKind:
        return self.KIND

    @property
    def capabilities(self) -> FrozenSet[ProviderCapability]:
        return self.CAPABILITIES

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def default_model(self) -> str:
        return self._defaults.model or self._config.default_model or self.DEFAULT_MODEL

    @property
    def is_connected(self) -> bool:
        return self._client is not None and not self._client.is_closed

    def supports(self, capability: ProviderCapability) -> bool:
        return capability in self.CAPABILITIES

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        """Headers sent with every request."""
        return {"Content-Type": "application/json", **self._config.headers}

    async def connect(self) -> None:
        """Create the HTTP client for this provider."""
        if self.is_connected:
            return

        if self.REQUIRES_API_KEY and not self._config.api_key:
            raise AuthenticationError("API key required", provider=self._name)

        self._client = WireClient(
            provider=self._name,
            base_url=self._base_url,
            headers=self._headers(),
            timeout=self._config.timeout,
            transport=self._transport,
        )
        logger.info(f"Connected to {self.KIND.value} at {self._base_url} as {self._name}")

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info(f"Disconnected from {self._name}")

    async def _get_client(self) -> WireClient:
        if not self.is_connected:
            await self.connect()
        return self._client

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def resolve_options(self, options: Optional[GenerationOptions] = None) -> GenerationOptions:
        """Merge call options over configured defaults and fill the model."""
        resolved = (options or GenerationOptions()).merged_with(self._defaults)
        if not resolved.model:
            resolved = resolved.model_copy(update={"model": self.default_model})
        return resolved

    def validate(self, messages: Sequence[ChatMessage], options: GenerationOptions) -> None:
        """
        Check a request against this provider's constraints.

        Raises:
            InvalidRequestError: Malformed message list or option values
            UnsupportedOptionError: Option the provider cannot honour
        """
        if not messages:
            raise InvalidRequestError("At least one message is required", provider=self._name)

        system_positions = [i for i, m in enumerate(messages) if m.role == "system"]
        if len(system_positions) > 1:
            raise InvalidRequestError("At most one system message is allowed", provider=self._name)
        if (
            system_positions
            and system_positions[0] != 0
            and self.supports(ProviderCapability.SYSTEM_FIRST)
        ):
            raise InvalidRequestError("System message must come first", provider=self._name)

        if options.is_set("stop") and not self.supports(ProviderCapability.STOP_SEQUENCES):
            raise UnsupportedOptionError(
                f"{self.KIND.value} does not support stop sequences",
                provider=self._name,
                option="stop",
            )

        if options.is_set("logit_bias"):
            if not self.supports(ProviderCapability.LOGIT_BIAS):
                raise UnsupportedOptionError(
                    f"{self.KIND.value} does not support logit bias",
                    provider=self._name,
                    option="logit_bias",
                )
            for token, bias in options.logit_bias.items():
                if not -100 <= bias <= 100:
                    raise InvalidRequestError(
                        f"Logit bias for token {token} out of range [-100, 100]: {bias}",
                        provider=self._name,
                    )

        if options.is_set("response_format") and not self.supports(ProviderCapability.JSON_MODE):
            raise UnsupportedOptionError(
                f"{self.KIND.value} does not support response_format",
                provider=self._name,
                option="response_format",
            )

        if any(m.media is not None for m in messages) and not self.supports(ProviderCapability.VISION):
            raise UnsupportedOptionError(
                f"{self.KIND.value} does not accept media attachments",
                provider=self._name,
                option="media",
            )

    def prepare(
        self,
        messages: Iterable[MessageInput],
        options: Optional[GenerationOptions] = None,
        stream: bool = False,
    ) -> Tuple[Dict[str, Any], GenerationOptions]:
        """Validate inputs and return the vendor payload with the resolved options."""
        message_list = coerce_messages(messages)
        resolved = self.resolve_options(options)
        self.validate(message_list, resolved)
        return self._build_payload(message_list, resolved, stream), resolved

    def build_request(
        self,
        messages: Iterable[MessageInput],
        options: Optional[GenerationOptions] = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        """
        Build the provider-specific payload for a message list.

        No side effects; the payload is ready for transmission.
        """
        payload, _ = self.prepare(messages, options, stream)
        return payload

    @abstractmethod
    def _build_payload(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        """Map validated messages and options onto the vendor schema."""
        pass

    def _extras(self, options: GenerationOptions) -> Dict[str, Any]:
        """Extras this provider understands; everything else is dropped."""
        accepted = {k: v for k, v in options.extras.items() if k in self.EXTRA_KEYS}
        dropped = set(options.extras) - set(accepted)
        if dropped:
            logger.debug(f"{self._name}: ignoring extras not used by {self.KIND.value}: {sorted(dropped)}")
        return accepted

    def _omitted(self, options: GenerationOptions, *fields: str) -> None:
        """Log sampling fields that this provider's schema has no slot for."""
        unset = [f for f in fields if options.is_set(f)]
        if unset:
            logger.debug(f"{self._name}: omitting unsupported fields {unset}")

    # ------------------------------------------------------------------
    # Wire
    # ------------------------------------------------------------------

    async def invoke(
        self,
        payload: Dict[str, Any],
        options: Optional[GenerationOptions] = None,
        path: Optional[str] = None,
    ) -> RawResponse:
        """Send a payload and wait for the full response."""
        client = await self._get_client()
        return await client.post_json(
            path or self._completions_path,
            payload,
            headers=dict(options.headers) if options and options.headers else None,
            timeout=options.timeout if options else None,
        )

    async def invoke_stream(
        self,
        payload: Dict[str, Any],
        options: Optional[GenerationOptions] = None,
        path: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send a streaming payload and yield decoded events in arrival order."""
        client = await self._get_client()
        lines = client.stream_lines(
            path or self._completions_path,
            payload,
            headers=dict(options.headers) if options and options.headers else None,
            timeout=options.timeout if options else None,
        )
        framing = iter_ndjson if self.STREAM_FRAMING == "ndjson" else iter_sse_events
        events = framing(lines, provider=self._name)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()
            await lines.aclose()

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @abstractmethod
    def parse_response(self, raw: RawResponse, requested_model: str) -> CompletionResult:
        """Convert a raw response into a CompletionResult."""
        pass

    @abstractmethod
    def stream_parser(self, requested_model: str) -> StreamParser:
        """Create a parser for one streaming call."""
        pass

    def normalize(self, raw: RawResponse, requested_model: str) -> CompletionResult:
        """parse_response with schema violations reported as DecodeError."""
        if not isinstance(raw.body, dict):
            raise DecodeError("Response body is not a JSON object", provider=self._name, body=raw.body)
        try:
            return self.parse_response(raw, requested_model)
        except GatewayError:
            raise
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            raise DecodeError(
                f"Unexpected {self.KIND.value} response schema: {e}",
                provider=self._name,
                body=raw.body,
            ) from e

    def extract_metadata(
        self,
        raw: RawResponse,
        result: CompletionResult,
        rate_table: Optional[RateTable] = None,
    ) -> Dict[str, Any]:
        """Common metadata plus provider-specific fields."""
        metadata = build_metadata(self.KIND.value, raw, result, rate_table)
        metadata.update(self._provider_metadata(raw.body))
        return metadata

    def _provider_metadata(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def complete_with_response(
        self,
        messages: Iterable[MessageInput],
        options: Optional[GenerationOptions] = None,
    ) -> Tuple[CompletionResult, RawResponse]:
        """Run one blocking call and return the result with its raw response."""
        payload, resolved = self.prepare(messages, options)
        raw = await self.invoke(payload, resolved)
        return self.normalize(raw, resolved.model), raw

    async def complete(
        self,
        messages: Iterable[MessageInput],
        options: Optional[GenerationOptions] = None,
    ) -> CompletionResult:
        """
        Create a chat completion.

        Args:
            messages: Conversation messages
            options: Generation options

        Returns:
            Normalized completion result
        """
        result, _ = await self.complete_with_response(messages, options)
        return result

    async def stream(
        self,
        messages: Iterable[MessageInput],
        options: Optional[GenerationOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Create a streaming chat completion.

        Validation happens on first iteration. The sequence is single-pass
        and always ends with exactly one final chunk.

        Yields:
            StreamChunks in transport order
        """
        payload, resolved = self.prepare(messages, options, stream=True)
        chunks = self._stream_chunks(payload, resolved)
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()

    async def _stream_chunks(
        self,
        payload: Dict[str, Any],
        options: GenerationOptions,
        path: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Run a streaming call through this provider's parser."""
        parser = self.stream_parser(options.model)
        events = self.invoke_stream(payload, options, path)
        try:
            async for event in events:
                try:
                    chunks = parser.feed(event)
                except GatewayError:
                    raise
                except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
                    raise DecodeError(
                        f"Unexpected {self.KIND.value} stream event: {e}",
                        provider=self._name,
                        body=event.data,
                    ) from e
                for chunk in chunks:
                    yield chunk
                if parser.done:
                    break
            if not parser.done:
                yield parser.finish()
        finally:
            await events.aclose()

    async def list_models(self) -> List[Dict[str, Any]]:
        """List models available from this provider."""
        if not self.MODELS_PATH:
            return []
        client = await self._get_client()
        raw = await client.get_json(self.MODELS_PATH)
        return self._parse_models(raw.body)

    def _parse_models(self, body: Any) -> List[Dict[str, Any]]:
        if isinstance(body, dict):
            return list(body.get("data", []))
        return []

    async def health_check(self) -> Dict[str, Any]:
        """Check provider health by listing models."""
        try:
            models = await self.list_models()
            return {
                "healthy": True,
                "provider": self._name,
                "model_count": len(models),
            }
        except GatewayError as e:
            return {"healthy": False, "provider": self._name, "error": str(e)}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r}, kind={self.KIND.value!r})"
