"""
Model routing.

Registry order is the tie-break: when two configured backends claim
the same model, the one declared first wins.
"""

import logging
from typing import Optional, Sequence

from .errors import ModelNotSupportedError
from .interface import AbstractProvider

logger = logging.getLogger(__name__)


def find_provider(model: str, providers: Sequence[AbstractProvider]) -> Optional[AbstractProvider]:
    """Return the first provider that serves the model, or None."""
    for provider in providers:
        if provider.supports(model):
            return provider
    return None


def resolve(model: str, providers: Sequence[AbstractProvider]) -> AbstractProvider:
    """
    Pick the backend for a model.

    Raises:
        ModelNotSupportedError: If no available backend serves the model
    """
    provider = find_provider(model, providers)
    if provider is None:
        logger.info(f"No backend for model {model} among {[p.name for p in providers]}")
        raise ModelNotSupportedError(model)

    logger.debug(f"Routing {model} to {provider.name}")
    return provider
