"""
Perplexity adapter.

Perplexity's sonar models answer with live web search. The API is
OpenAI-shaped but served at `/chat/completions`, requires the system
message to come first and returns source citations next to the choices.
"""

import logging
from typing import Any, Dict, List

from ..core.interface import ProviderCapability, ProviderKind
from .openai_adapter import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


class PerplexityAdapter(OpenAICompatibleProvider):
    """
    Perplexity search-augmented chat adapter.

    Stop sequences, logit bias and media are rejected; seeds are omitted.
    Search behaviour is controlled through extras.
    """

    KIND = ProviderKind.PERPLEXITY
    CAPABILITIES = frozenset({
        ProviderCapability.STREAMING,
        ProviderCapability.TOP_K,
        ProviderCapability.PENALTIES,
        ProviderCapability.SYSTEM_FIRST,
        ProviderCapability.SEARCH_CITATIONS,
    })
    DEFAULT_BASE_URL = "https://api.perplexity.ai"
    DEFAULT_MODEL = "llama-3.1-sonar-large-128k-online"
    COMPLETIONS_PATH = "/chat/completions"
    MODELS_PATH = None
    EXTRA_KEYS = frozenset({
        "search_domain_filter",
        "search_recency_filter",
        "return_images",
        "return_related_questions",
        "return_citations",
    })

    KNOWN_MODELS = [
        {"id": "llama-3.1-sonar-small-128k-online", "description": "Faster responses, good for simple queries"},
        {"id": "llama-3.1-sonar-large-128k-online", "description": "Best quality, comprehensive search"},
        {"id": "llama-3.1-sonar-huge-128k-online", "description": "Largest model, deepest research"},
    ]

    def _provider_metadata(self, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"citations": list(body.get("citations") or [])}
        for key in ("images", "related_questions"):
            if body.get(key) is not None:
                metadata[key] = body[key]
        return metadata

    async def list_models(self) -> List[Dict[str, Any]]:
        """List the online sonar models; Perplexity has no models endpoint."""
        return [dict(m) for m in self.KNOWN_MODELS]

    async def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": self._config.api_key is not None,
            "provider": self._name,
            "note": "No dedicated health endpoint",
        }
