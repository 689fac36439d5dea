"""
Core gateway components.

The registry lives in core.registry and is imported from there; it
depends on the adapters, which in turn build on this package.
"""

from .interface import AbstractProvider
from .config import GatewayConfig, ProviderSettings, build_env, load_config
from .router import find_provider, resolve
from .streaming import CancelToken, StreamEvent, StreamTranslator, encode_sse
from .errors import (
    GatewayError,
    ModelNotSupportedError,
    UpstreamError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)

__all__ = [
    "AbstractProvider",
    "GatewayConfig",
    "ProviderSettings",
    "build_env",
    "load_config",
    "find_provider",
    "resolve",
    "CancelToken",
    "StreamEvent",
    "StreamTranslator",
    "encode_sse",
    "GatewayError",
    "ModelNotSupportedError",
    "UpstreamError",
    "UpstreamConnectionError",
    "UpstreamTimeoutError",
]
