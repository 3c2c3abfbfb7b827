"""
Configuration loading for the chat gateway.

Configuration is read once at startup and is immutable afterwards: every
dataclass here is frozen and mapping fields are exposed read-only.
"""

import os
import logging
from types import MappingProxyType
from typing import Dict, List, Any, Mapping, Optional
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import GatewayConfigError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


def _freeze(obj: Any, name: str, value: Optional[Mapping[str, Any]]) -> None:
    object.__setattr__(obj, name, MappingProxyType(dict(value or {})))


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for a single provider instance."""
    type: str
    name: str
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 60.0
    default_model: Optional[str] = None
    api_version: Optional[str] = None
    beta_version: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None
    completions_path: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    default_options: Mapping[str, Any] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _freeze(self, "headers", self.headers)
        _freeze(self, "default_options", self.default_options)
        _freeze(self, "extra", self.extra)


@dataclass(frozen=True)
class RoutingConfig:
    """Model name (or fnmatch pattern) to provider names."""
    model_routing: Mapping[str, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self,
            "model_routing",
            MappingProxyType({k: tuple(v) for k, v in dict(self.model_routing or {}).items()}),
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration."""
    default_provider: Optional[str] = None
    providers: tuple = ()
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    max_concurrency: Optional[int] = DEFAULT_MAX_CONCURRENCY
    pricing: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "providers", tuple(self.providers))
        _freeze(self, "pricing", self.pricing)

    def get_provider(self, name: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None


def load_config(config_path: Optional[str] = None) -> GatewayConfig:
    """
    Load gateway configuration from a YAML file.

    Args:
        config_path: Path to config file. If None, uses default locations.

    Returns:
        Loaded configuration. Falls back to environment-based defaults
        when no file is found.

    Raises:
        GatewayConfigError: If the file exists but cannot be parsed
    """
    if config_path is None:
        paths = [
            Path("config/chat-gateway/gateways.yaml"),
            Path("/etc/chat-gateway/gateways.yaml"),
            Path.home() / ".config/chat-gateway/gateways.yaml",
        ]
        for p in paths:
            if p.exists():
                config_path = str(p)
                break

    if config_path is None or not Path(config_path).exists():
        logger.warning("No gateway config file found, using environment defaults")
        return default_config()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise GatewayConfigError(f"Failed to load config from {config_path}: {e}") from e

    logger.info(f"Loaded gateway config from {config_path}")
    return parse_config(data)


def _expand_env(value: Any) -> Any:
    """Expand ${VAR} references in string values."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.environ.get(value[2:-1], "")
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def parse_config(data: Dict[str, Any]) -> GatewayConfig:
    """Parse a configuration dictionary."""
    if not isinstance(data, dict):
        raise GatewayConfigError("Gateway config must be a mapping")

    data = _expand_env(data)
    providers = []

    for p_data in data.get("providers", []):
        if not p_data.get("type"):
            raise GatewayConfigError(f"Provider entry without type: {p_data}")
        providers.append(ProviderConfig(
            type=p_data["type"],
            name=p_data.get("name") or p_data["type"],
            base_url=p_data.get("base_url"),
            api_key=p_data.get("api_key") or None,
            timeout=float(p_data.get("timeout", 60.0)),
            default_model=p_data.get("default_model"),
            api_version=p_data.get("api_version"),
            beta_version=p_data.get("beta_version"),
            organization=p_data.get("organization") or None,
            project=p_data.get("project") or None,
            completions_path=p_data.get("completions_path"),
            headers=p_data.get("headers", {}),
            default_options=p_data.get("default_options", {}),
            extra=p_data.get("extra", {}),
        ))

    names = [p.name for p in providers]
    if len(names) != len(set(names)):
        raise GatewayConfigError(f"Duplicate provider names: {names}")

    routing_data = data.get("routing", {}) or {}
    routing = RoutingConfig(model_routing=routing_data.get("model_routing", {}))

    default_provider = data.get("default_provider")
    if default_provider and default_provider not in names:
        raise GatewayConfigError(f"Default provider not configured: {default_provider}")

    max_concurrency = data.get("max_concurrency", DEFAULT_MAX_CONCURRENCY)
    if max_concurrency is not None and (not isinstance(max_concurrency, int) or max_concurrency < 0):
        raise GatewayConfigError(f"max_concurrency must be a non-negative integer: {max_concurrency!r}")

    return GatewayConfig(
        default_provider=default_provider or (names[0] if names else None),
        providers=providers,
        routing=routing,
        max_concurrency=max_concurrency,
        pricing=data.get("pricing", {}),
    )


def default_config() -> GatewayConfig:
    """
    Build configuration from environment variables.

    Hosted providers are only configured when their API key is present;
    the local Ollama server needs no key and is always configured.
    """
    providers = []

    if os.environ.get("OPENAI_API_KEY"):
        providers.append(ProviderConfig(
            type="openai",
            name="openai",
            base_url=os.environ.get("OPENAI_BASE_URL"),
            api_key=os.environ["OPENAI_API_KEY"],
            organization=os.environ.get("OPENAI_ORGANIZATION") or None,
            project=os.environ.get("OPENAI_PROJECT") or None,
        ))

    if os.environ.get("ANTHROPIC_API_KEY"):
        providers.append(ProviderConfig(
            type="anthropic",
            name="anthropic",
            base_url=os.environ.get("ANTHROPIC_BASE_URL"),
            api_key=os.environ["ANTHROPIC_API_KEY"],
            api_version=os.environ.get("ANTHROPIC_VERSION"),
            beta_version=os.environ.get("ANTHROPIC_BETA"),
        ))

    if os.environ.get("MISTRAL_API_KEY"):
        providers.append(ProviderConfig(
            type="mistral",
            name="mistral",
            api_key=os.environ["MISTRAL_API_KEY"],
        ))

    if os.environ.get("PERPLEXITY_API_KEY"):
        providers.append(ProviderConfig(
            type="perplexity",
            name="perplexity",
            api_key=os.environ["PERPLEXITY_API_KEY"],
        ))

    providers.append(ProviderConfig(
        type="ollama",
        name="ollama",
        base_url=os.environ.get("OLLAMA_HOST", "http://localhost:11434"),
        timeout=120.0,
    ))

    return GatewayConfig(
        default_provider=providers[0].name,
        providers=providers,
        routing=RoutingConfig(
            model_routing={
                "gpt-*": ["openai"],
                "o1*": ["openai"],
                "claude-*": ["anthropic"],
                "mistral-*": ["mistral"],
                "open-mistral-*": ["mistral"],
                "pixtral-*": ["mistral"],
                "*sonar*": ["perplexity"],
            },
        ),
    )
