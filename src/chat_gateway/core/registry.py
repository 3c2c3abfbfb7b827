"""
Provider registry for managing and discovering provider adapters.
"""

import fnmatch
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Type, Any

import httpx

from .config import GatewayConfig, ProviderConfig
from .errors import ProviderNotFoundError
from .interface import AbstractProvider, ProviderCapability

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Registry for provider adapters.

    Maps adapter types to classes, holds the configured provider
    instances and resolves which provider serves a given model.
    """

    def __init__(self):
        """Initialize the registry."""
        self._adapters: Dict[str, Type[AbstractProvider]] = {}
        self._instances: Dict[str, AbstractProvider] = {}
        self._default_provider: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ProviderRegistry":
        """
        Build a registry with the built-in adapters and the configured providers.

        Args:
            config: Gateway configuration
            transport: Optional httpx transport shared by all providers
        """
        from ..adapters import BUILTIN_ADAPTERS

        registry = cls()
        for provider_type, adapter_class in BUILTIN_ADAPTERS.items():
            registry.register_adapter(provider_type, adapter_class)

        for provider_config in config.providers:
            registry.create_provider(provider_config, transport=transport)

        if config.default_provider:
            registry.set_default_provider(config.default_provider)
        return registry

    def register_adapter(
        self,
        provider_type: str,
        adapter_class: Type[AbstractProvider]
    ) -> None:
        """
        Register a provider adapter class.

        Args:
            provider_type: Type identifier (e.g., "openai", "ollama")
            adapter_class: Adapter class to register
        """
        self._adapters[provider_type] = adapter_class
        logger.debug(f"Registered provider adapter: {provider_type}")

    def create_provider(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> AbstractProvider:
        """
        Create a provider instance from a registered adapter.

        Args:
            config: Provider configuration
            transport: Optional httpx transport

        Returns:
            Configured provider instance
        """
        if config.type not in self._adapters:
            raise ProviderNotFoundError(f"Unknown provider type: {config.type}")

        adapter_class = self._adapters[config.type]
        instance = adapter_class(config, transport=transport)
        self._instances[config.name] = instance

        logger.info(f"Created provider instance: {config.name} (type: {config.type})")
        return instance

    def get_provider(self, name: str) -> AbstractProvider:
        """
        Get a provider instance by name.

        Raises:
            ProviderNotFoundError: If provider not found
        """
        if name not in self._instances:
            raise ProviderNotFoundError(f"Provider not found: {name}")
        return self._instances[name]

    def get_default_provider(self) -> Optional[AbstractProvider]:
        if self._default_provider:
            return self._instances.get(self._default_provider)
        return None

    def set_default_provider(self, name: str) -> None:
        if name not in self._instances:
            raise ProviderNotFoundError(f"Provider not found: {name}")
        self._default_provider = name
        logger.info(f"Set default provider: {name}")

    def list_providers(self) -> List[Dict[str, Any]]:
        """
        List all provider instances.

        Returns:
            List of provider info dicts
        """
        return [
            {
                "name": p.name,
                "type": p.kind.value,
                "capabilities": sorted(c.value for c in p.capabilities),
                "default_model": p.default_model,
                "is_connected": p.is_connected,
                "is_default": p.name == self._default_provider,
            }
            for p in self._instances.values()
        ]

    def find_provider_for_model(
        self,
        model: str,
        model_routing: Optional[Mapping[str, Sequence[str]]] = None
    ) -> AbstractProvider:
        """
        Find the provider that serves a model.

        Exact routing entries win over fnmatch patterns; the default
        provider is used when nothing matches.

        Raises:
            ProviderNotFoundError: If no route matches and no default is set
        """
        if model_routing:
            if model in model_routing:
                for name in model_routing[model]:
                    if name in self._instances:
                        return self._instances[name]

            for pattern, provider_names in model_routing.items():
                if fnmatch.fnmatch(model, pattern):
                    for name in provider_names:
                        if name in self._instances:
                            return self._instances[name]

        default = self.get_default_provider()
        if default is None:
            raise ProviderNotFoundError(f"No provider configured for model: {model}")
        return default

    def find_providers_with_capability(
        self,
        capability: ProviderCapability
    ) -> List[AbstractProvider]:
        return [p for p in self._instances.values() if p.supports(capability)]

    async def disconnect_all(self) -> None:
        """Disconnect all provider instances."""
        for provider in self._instances.values():
            await provider.disconnect()

    async def health_check_all(self) -> Dict[str, Dict[str, Any]]:
        """
        Perform health checks on all providers.

        Returns:
            Dict mapping provider name to health status
        """
        results = {}
        for name, provider in self._instances.items():
            results[name] = await provider.health_check()
        return results
