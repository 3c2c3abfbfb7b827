"""
Chat Gateway

A low-level gateway to chat-completion providers:
- Native REST payloads for OpenAI, Anthropic, Ollama, Mistral and Perplexity
- Unified completion, stream chunk and usage models
- HTTP, usage, cost-estimate and throughput metadata
- Concurrent batch and model-comparison runs
"""

from .core.config import GatewayConfig, ProviderConfig, load_config
from .core.errors import (
    GatewayError,
    GatewayConfigError,
    ProviderNotFoundError,
    InvalidRequestError,
    UnsupportedOptionError,
    TransportError,
    ProviderError,
    AuthenticationError,
    RateLimitError,
    DecodeError,
)
from .core.interface import AbstractProvider, ProviderCapability, ProviderKind
from .core.registry import ProviderRegistry
from .gateway import ChatGateway
from .metadata import ModelRate, RateTable
from .models.request import ChatMessage, GenerationOptions, Media
from .models.response import CompletionResult, StreamChunk, Usage
from .models.batch import BatchItemResult, ComparisonResult
from .orchestrator import BatchOrchestrator
from .streaming import collect_stream

__all__ = [
    "ChatGateway",
    "AbstractProvider",
    "ProviderCapability",
    "ProviderKind",
    "ProviderRegistry",
    "GatewayConfig",
    "ProviderConfig",
    "load_config",
    "ModelRate",
    "RateTable",
    "BatchOrchestrator",
    "collect_stream",
    "ChatMessage",
    "GenerationOptions",
    "Media",
    "CompletionResult",
    "StreamChunk",
    "Usage",
    "BatchItemResult",
    "ComparisonResult",
    "GatewayError",
    "GatewayConfigError",
    "ProviderNotFoundError",
    "InvalidRequestError",
    "UnsupportedOptionError",
    "TransportError",
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "DecodeError",
]
