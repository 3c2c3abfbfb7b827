"""
Core gateway components.
"""

from .errors import (
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
from .config import GatewayConfig, ProviderConfig, RoutingConfig, load_config, parse_config
from .interface import AbstractProvider, ProviderCapability, ProviderKind
from .registry import ProviderRegistry

__all__ = [
    "AbstractProvider",
    "ProviderCapability",
    "ProviderKind",
    "ProviderRegistry",
    "GatewayConfig",
    "ProviderConfig",
    "RoutingConfig",
    "load_config",
    "parse_config",
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
