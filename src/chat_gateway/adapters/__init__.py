"""
Provider adapters for the supported chat APIs.
"""

from .openai_adapter import OpenAIAdapter, OpenAICompatibleProvider
from .anthropic_adapter import AnthropicAdapter
from .ollama_adapter import OllamaAdapter
from .mistral_adapter import MistralAdapter
from .perplexity_adapter import PerplexityAdapter

BUILTIN_ADAPTERS = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "ollama": OllamaAdapter,
    "mistral": MistralAdapter,
    "perplexity": PerplexityAdapter,
}

__all__ = [
    "BUILTIN_ADAPTERS",
    "OpenAIAdapter",
    "OpenAICompatibleProvider",
    "AnthropicAdapter",
    "OllamaAdapter",
    "MistralAdapter",
    "PerplexityAdapter",
]
