"""
Chat gateway facade.

The operations exposed to callers: single completions, streaming,
batch runs (many messages against one model), model comparison (one
message against many models) and metadata extraction. Provider choice
follows the explicit provider name, then model routing from
configuration, then the default provider.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx
from opentelemetry import trace

from .core.config import GatewayConfig, load_config
from .core.errors import GatewayError, ProviderNotFoundError
from .core.interface import AbstractProvider, MessageInput
from .core.registry import ProviderRegistry
from .metadata import RateTable
from .models.batch import BatchItemResult, ComparisonResult
from .models.request import ChatMessage, GenerationOptions
from .models.response import CompletionResult, StreamChunk
from .orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Conversation = Union[str, MessageInput, Sequence[MessageInput]]

WARM_UP_PROMPT = "Hello"


def as_messages(conversation: Conversation) -> List[MessageInput]:
    """Accept a bare prompt, a single message or a message list."""
    if isinstance(conversation, str):
        return [ChatMessage.user(conversation)]
    if isinstance(conversation, (ChatMessage, dict)):
        return [conversation]
    return list(conversation)


def _item_key(conversation: Conversation) -> str:
    if isinstance(conversation, str):
        return conversation
    messages = as_messages(conversation)
    last = messages[-1] if messages else None
    if isinstance(last, ChatMessage):
        return last.content
    if isinstance(last, dict):
        return str(last.get("content", ""))
    return ""


def _with_model(options: Optional[GenerationOptions], model: Optional[str]) -> GenerationOptions:
    options = options or GenerationOptions()
    if model:
        return options.model_copy(update={"model": model})
    return options


def _record_result(span: trace.Span, result: CompletionResult) -> None:
    span.set_attribute("model", result.model)
    span.set_attribute("finish_reason", result.finish_reason)
    span.set_attribute("input_tokens", result.usage.input_tokens)
    span.set_attribute("output_tokens", result.usage.output_tokens)


class ChatGateway:
    """
    Entry point for chat calls across all configured providers.

    Usage:
        async with ChatGateway.from_config_file() as gateway:
            result = await gateway.complete("What is 1+1?")
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        rate_table: Optional[RateTable] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Gateway configuration; loaded from the default locations
                when omitted
            registry: Pre-built provider registry; built from `config` when
                omitted
            rate_table: Token rates for cost estimates; defaults plus the
                `pricing` section of `config` when omitted
            transport: Optional httpx transport handed to every provider
        """
        self._config = config if config is not None else load_config()
        self._registry = registry or ProviderRegistry.from_config(self._config, transport=transport)
        self._rate_table = rate_table or RateTable.from_config(self._config.pricing)
        self._orchestrator = BatchOrchestrator(self._config.max_concurrency)

    @classmethod
    def from_config_file(cls, config_path: Optional[str] = None, **kwargs) -> "ChatGateway":
        """Create a gateway from a YAML configuration file."""
        return cls(load_config(config_path), **kwargs)

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def rate_table(self) -> RateTable:
        return self._rate_table

    async def __aenter__(self) -> "ChatGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close every provider connection."""
        await self._registry.disconnect_all()

    def resolve_provider(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> AbstractProvider:
        """
        Pick the provider for a call.

        Raises:
            ProviderNotFoundError: If no provider matches
        """
        if provider:
            return self._registry.get_provider(provider)
        if model:
            return self._registry.find_provider_for_model(model, self._config.routing.model_routing)
        default = self._registry.get_default_provider()
        if default is None:
            raise ProviderNotFoundError("No default provider configured")
        return default

    # ------------------------------------------------------------------
    # Single calls
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: Conversation,
        options: Optional[GenerationOptions] = None,
        provider: Optional[str] = None,
    ) -> CompletionResult:
        """
        Run one blocking chat completion.

        Errors propagate to the caller unchanged.
        """
        options = options or GenerationOptions()
        target = self.resolve_provider(options.model, provider)

        with tracer.start_as_current_span("chat_gateway.complete") as span:
            span.set_attribute("provider", target.name)
            span.set_attribute("requested_model", options.model or target.default_model)
            result = await target.complete(as_messages(messages), options)
            _record_result(span, result)
            return result

    async def stream(
        self,
        messages: Conversation,
        options: Optional[GenerationOptions] = None,
        provider: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream one chat completion.

        Chunks are yielded in transport order and the last one has
        `is_final=True`. Closing the iterator early closes the connection.
        """
        options = options or GenerationOptions()
        target = self.resolve_provider(options.model, provider)

        span = tracer.start_span("chat_gateway.stream")
        span.set_attribute("provider", target.name)
        span.set_attribute("requested_model", options.model or target.default_model)
        chunks = target.stream(as_messages(messages), options)
        count = 0
        try:
            async for chunk in chunks:
                count += 1
                if chunk.is_final:
                    span.set_attribute("finish_reason", chunk.finish_reason or "")
                    if chunk.usage is not None:
                        span.set_attribute("input_tokens", chunk.usage.input_tokens)
                        span.set_attribute("output_tokens", chunk.usage.output_tokens)
                yield chunk
        except GatewayError as e:
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            raise
        finally:
            await chunks.aclose()
            span.set_attribute("chunk_count", count)
            span.end()

    async def metadata(
        self,
        messages: Conversation,
        options: Optional[GenerationOptions] = None,
        provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run one completion and return its HTTP, usage and cost metadata.

        Cost values are estimates from the rate table, never billing
        figures.
        """
        options = options or GenerationOptions()
        target = self.resolve_provider(options.model, provider)

        with tracer.start_as_current_span("chat_gateway.metadata") as span:
            span.set_attribute("provider", target.name)
            result, raw = await target.complete_with_response(as_messages(messages), options)
            _record_result(span, result)
            metadata = target.extract_metadata(raw, result, self._rate_table)
            if metadata.get("estimated_cost_usd") is not None:
                span.set_attribute("estimated_cost_usd", metadata["estimated_cost_usd"])
            return metadata

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def batch(
        self,
        messages: Sequence[Conversation],
        model: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
        provider: Optional[str] = None,
        warm_up: bool = False,
    ) -> List[BatchItemResult]:
        """
        Send many messages to one model concurrently.

        Args:
            messages: One prompt (or conversation) per call
            model: Model for every call; overrides `options.model`
            options: Shared generation options
            provider: Explicit provider name
            warm_up: Issue one discarded call first to load the model;
                skipped when there are no messages

        Returns:
            One BatchItemResult per message, in input order. Failed calls
            carry their error instead of a result.
        """
        call_options = _with_model(options, model)
        target = self.resolve_provider(call_options.model, provider)

        with tracer.start_as_current_span("chat_gateway.batch") as span:
            span.set_attribute("provider", target.name)
            span.set_attribute("requested_model", call_options.model or target.default_model)
            span.set_attribute("batch_size", len(messages))

            if warm_up and messages:
                await self._warm_up(target, call_options)

            calls = [
                (_item_key(m), lambda m=m: target.complete(as_messages(m), call_options))
                for m in messages
            ]
            results = await self._orchestrator.run(calls)

            span.set_attribute("failed", sum(1 for r in results if not r.ok))
            return results

    async def _warm_up(self, target: AbstractProvider, options: GenerationOptions) -> None:
        try:
            await target.complete([ChatMessage.user(WARM_UP_PROMPT)], options)
            logger.info(f"Warm-up call to {target.name} completed")
        except GatewayError as e:
            logger.warning(f"Warm-up call to {target.name} failed, continuing with batch: {e}")

    async def compare(
        self,
        message: Conversation,
        models: Sequence[str],
        options: Optional[GenerationOptions] = None,
    ) -> ComparisonResult:
        """
        Send one message to several models concurrently.

        Each model is routed to its provider through configuration. Models
        whose call fails are left out of the mapping and reported in
        `errors`.
        """
        unique_models = list(dict.fromkeys(models))
        conversation = as_messages(message)

        async def call(model: str) -> CompletionResult:
            target = self.resolve_provider(model)
            return await target.complete(conversation, _with_model(options, model))

        with tracer.start_as_current_span("chat_gateway.compare") as span:
            span.set_attribute("models", unique_models)
            results = await self._orchestrator.run(
                [(model, lambda model=model: call(model)) for model in unique_models]
            )

            comparison = ComparisonResult(
                {r.key: r.result for r in results if r.ok},
                {r.key: r.error for r in results if not r.ok},
            )
            span.set_attribute("failed", len(comparison.errors))
            return comparison

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def list_providers(self) -> List[Dict[str, Any]]:
        return self._registry.list_providers()

    async def list_models(self, provider: Optional[str] = None) -> List[Dict[str, Any]]:
        """List models of one provider (the default when omitted)."""
        return await self.resolve_provider(provider=provider).list_models()

    async def health_check(self) -> Dict[str, Dict[str, Any]]:
        """Health status of every configured provider."""
        return await self._registry.health_check_all()
