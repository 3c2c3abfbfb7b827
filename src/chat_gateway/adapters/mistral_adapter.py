"""
Mistral AI adapter.

Mistral's chat API follows the OpenAI schema with a few renames: the
seed is `random_seed`, image parts carry the URL as a plain string and
`safe_prompt` toggles the provider's guardrail prompt.
"""

import logging
from typing import Any, Dict

from ..core.interface import ProviderCapability, ProviderKind
from ..models.request import ChatMessage
from .openai_adapter import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


class MistralAdapter(OpenAICompatibleProvider):
    """
    Mistral AI adapter.

    Supports stop sequences, seeds, penalties, vision (pixtral models) and
    JSON mode; logit bias is rejected and top-k is omitted.
    """

    KIND = ProviderKind.MISTRAL
    CAPABILITIES = frozenset({
        ProviderCapability.STREAMING,
        ProviderCapability.STOP_SEQUENCES,
        ProviderCapability.SEED,
        ProviderCapability.PENALTIES,
        ProviderCapability.VISION,
        ProviderCapability.JSON_MODE,
    })
    DEFAULT_BASE_URL = "https://api.mistral.ai"
    DEFAULT_MODEL = "mistral-small-latest"
    SEED_FIELD = "random_seed"
    EXTRA_KEYS = frozenset({"safe_prompt"})

    def _image_part(self, message: ChatMessage) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": message.media.as_data_url()}

    def _provider_metadata(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "object": body.get("object"),
            "created": body.get("created"),
        }
