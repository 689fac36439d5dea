"""
Gateway error types.

Every backend-specific failure is flattened into an UpstreamError
carrying a status code and a message before it leaves an adapter.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import httpx

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base exception for gateway errors."""

    status_code: int = 500

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        self.message = message
        self.provider = provider
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ModelNotSupportedError(GatewayError):
    """Raised when no available backend serves the requested model."""

    status_code = 400

    def __init__(self, model: str):
        super().__init__(f"Model {model} not supported")
        self.model = model


class UpstreamError(GatewayError):
    """Raised when the selected backend call fails."""

    def __init__(self, status: int, message: str, provider: str = None):
        super().__init__(message, provider=provider, status_code=status)

    @property
    def status(self) -> int:
        return self.status_code


class UpstreamConnectionError(UpstreamError):
    """Raised when the backend cannot be reached."""

    def __init__(self, message: str, provider: str = None):
        super().__init__(502, message, provider=provider)


class UpstreamTimeoutError(UpstreamError):
    """Raised when the backend transport times out."""

    def __init__(self, message: str, provider: str = None):
        super().__init__(504, message, provider=provider)


def extract_error_message(payload: Any, default: str = "Upstream request failed") -> str:
    """
    Flatten a backend error body into a single message.

    Handles the shapes used by the supported backends:
    {"error": {"message": ...}}, {"error": "..."}, {"message": ...}
    and Gemini's list-wrapped variant.
    """
    if isinstance(payload, list) and payload:
        return extract_error_message(payload[0], default)

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict):
            message = error.get("message")
            if message:
                return str(message)
            return json.dumps(error)
        message = payload.get("message") or payload.get("detail")
        if message:
            return str(message)

    if isinstance(payload, str) and payload.strip():
        return payload.strip()

    return default


def error_from_response(response: httpx.Response, provider: str) -> UpstreamError:
    """Build an UpstreamError from a read, non-2xx response."""
    try:
        payload = response.json()
    except ValueError:
        payload = response.text

    message = extract_error_message(
        payload, default=f"{provider} returned HTTP {response.status_code}"
    )
    return UpstreamError(response.status_code, message, provider=provider)


async def raise_for_upstream(response: httpx.Response, provider: str) -> None:
    """
    Raise UpstreamError for a non-2xx response.

    Works for streamed responses too: the body is read before parsing.
    """
    if response.is_success:
        return

    await response.aread()
    error = error_from_response(response, provider)
    logger.warning(f"{provider} returned {error.status_code}: {error.message}")
    raise error


@contextmanager
def upstream_errors(provider: str) -> Iterator[None]:
    """Translate transport and decoding failures into UpstreamError."""
    try:
        yield
    except GatewayError:
        raise
    except httpx.TimeoutException as e:
        logger.error(f"{provider} timed out: {e}")
        raise UpstreamTimeoutError(f"{provider} request timed out", provider=provider) from e
    except httpx.RequestError as e:
        logger.error(f"{provider} connection failed: {e}")
        raise UpstreamConnectionError(f"{provider} connection failed: {e}", provider=provider) from e
    except (ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
        logger.error(f"{provider} returned a malformed response: {e}")
        raise UpstreamError(
            502, f"Malformed response from {provider}: {e}", provider=provider
        ) from e
