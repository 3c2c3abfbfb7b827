"""
Response metadata: cost estimates and throughput.

Cost figures produced here are ESTIMATES computed from a reference rate
table. They are not billing figures and are always exposed under
`estimated_*` keys together with `cost_is_estimate=True`. Update the
default rates (or override them in configuration under `pricing:`) when
vendor pricing changes.
"""

import fnmatch
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .core.errors import GatewayConfigError
from .models.response import CompletionResult, RawResponse

logger = logging.getLogger(__name__)

PER_MILLION = Decimal(1_000_000)


class ModelRate(BaseModel):
    """Price per million tokens, in USD."""
    model_config = ConfigDict(frozen=True)

    input: Decimal = Field(ge=0)
    output: Decimal = Field(ge=0)


def _rate(input_per_million: str, output_per_million: str) -> ModelRate:
    return ModelRate(input=Decimal(input_per_million), output=Decimal(output_per_million))


# Reference pricing per provider type; patterns are matched in order, so
# more specific patterns come first.
DEFAULT_RATES: Dict[str, Dict[str, ModelRate]] = {
    "openai": {
        "gpt-4o-mini*": _rate("0.15", "0.60"),
        "gpt-4o*": _rate("2.50", "10.00"),
        "gpt-4-turbo*": _rate("10.00", "30.00"),
        "gpt-3.5-turbo*": _rate("0.50", "1.50"),
    },
    "anthropic": {
        "claude-3-5-sonnet*": _rate("3.00", "15.00"),
        "claude-3-5-haiku*": _rate("0.80", "4.00"),
        "claude-3-opus*": _rate("15.00", "75.00"),
        "claude-3-sonnet*": _rate("3.00", "15.00"),
        "claude-3-haiku*": _rate("0.25", "1.25"),
    },
    "ollama": {
        # Local inference, no per-token charge
        "*": _rate("0", "0"),
    },
    "mistral": {
        "mistral-small*": _rate("0.20", "0.60"),
        "mistral-large*": _rate("2.00", "6.00"),
        "pixtral-large*": _rate("2.00", "6.00"),
        "open-mistral-nemo*": _rate("0.15", "0.15"),
    },
    "perplexity": {
        "llama-3.1-sonar-small*": _rate("0.20", "0.20"),
        "llama-3.1-sonar-large*": _rate("1.00", "1.00"),
        "llama-3.1-sonar-huge*": _rate("5.00", "5.00"),
        "sonar-pro*": _rate("3.00", "15.00"),
        "sonar*": _rate("1.00", "1.00"),
    },
}


class RateTable:
    """
    Pluggable per-provider, per-model token rates.

    Lookups try an exact model name first, then fnmatch patterns in
    table order.
    """

    def __init__(self, rates: Optional[Mapping[str, Mapping[str, ModelRate]]] = None):
        source = DEFAULT_RATES if rates is None else rates
        self._rates: Dict[str, Dict[str, ModelRate]] = {
            provider: dict(models) for provider, models in source.items()
        }

    @classmethod
    def from_config(cls, pricing: Optional[Mapping[str, Any]]) -> "RateTable":
        """
        Build a table from the defaults plus configuration overrides.

        Args:
            pricing: Mapping of provider type to {model pattern: {input, output}}
                with prices per million tokens
        """
        return cls().with_overrides(pricing or {})

    def with_overrides(self, pricing: Mapping[str, Any]) -> "RateTable":
        """
        Return a new table where the given entries take precedence.

        Raises:
            GatewayConfigError: If an entry is missing a rate or a rate is
                negative or not a number
        """
        merged: Dict[str, Dict[str, ModelRate]] = {}
        if not isinstance(pricing, Mapping):
            raise GatewayConfigError("pricing must be a mapping of provider to model rates")
        for provider, models in pricing.items():
            try:
                merged[provider] = {
                    pattern: ModelRate(input=Decimal(str(r["input"])), output=Decimal(str(r["output"])))
                    for pattern, r in models.items()
                }
            except (KeyError, TypeError, AttributeError, ArithmeticError, ValueError) as e:
                raise GatewayConfigError(f"Invalid pricing for provider {provider!r}: {e}") from e
        for provider, models in self._rates.items():
            entry = merged.setdefault(provider, {})
            for pattern, rate in models.items():
                entry.setdefault(pattern, rate)
        return RateTable(merged)

    def lookup(self, provider: str, model: str) -> Optional[ModelRate]:
        models = self._rates.get(provider, {})
        if model in models:
            return models[model]
        for pattern, rate in models.items():
            if fnmatch.fnmatch(model, pattern):
                return rate
        return None


def estimate_cost(
    rate: ModelRate,
    input_tokens: int,
    output_tokens: int,
) -> Tuple[Decimal, Decimal]:
    """
    Estimate input and output cost in USD.

    Monotonically non-decreasing in both token counts since rates are
    non-negative.
    """
    input_cost = Decimal(input_tokens) * rate.input / PER_MILLION
    output_cost = Decimal(output_tokens) * rate.output / PER_MILLION
    return input_cost, output_cost


def tokens_per_second(token_count: Optional[int], duration_ns: Optional[int]) -> Optional[float]:
    """
    Throughput from a token count and a duration in nanoseconds.

    Returns None when the duration is missing or zero.
    """
    if token_count is None or not duration_ns or duration_ns <= 0:
        return None
    return token_count / (duration_ns * 1e-9)


def build_metadata(
    provider_type: str,
    raw: RawResponse,
    result: CompletionResult,
    rate_table: Optional[RateTable] = None,
) -> Dict[str, Any]:
    """
    Common metadata map for one completed call.

    Provider adapters add their own fields on top of this.
    """
    rate_table = rate_table or RateTable()
    usage = result.usage

    metadata: Dict[str, Any] = {
        "provider": result.provider,
        "http_status": raw.transport.status_code,
        "http_headers": raw.transport.headers,
        "elapsed_ms": raw.transport.elapsed_ms,
        "id": result.response_id,
        "model": result.model,
        "requested_model": result.requested_model,
        "finish_reason": result.finish_reason,
        "response_content": result.text,
        "input_tokens": usage.input_tokens,
        "output_tokens": usage.output_tokens,
        "total_tokens": usage.total_tokens,
        "cost_is_estimate": True,
        "estimated_cost_usd": None,
    }

    rate = rate_table.lookup(provider_type, result.model)
    if rate is None and result.requested_model:
        rate = rate_table.lookup(provider_type, result.requested_model)

    if rate is None:
        logger.debug(f"No rate for {provider_type}/{result.model}; cost estimate omitted")
    else:
        input_cost, output_cost = estimate_cost(rate, usage.input_tokens, usage.output_tokens)
        metadata["estimated_input_cost_usd"] = float(input_cost)
        metadata["estimated_output_cost_usd"] = float(output_cost)
        metadata["estimated_cost_usd"] = float(input_cost + output_cost)

    return metadata
