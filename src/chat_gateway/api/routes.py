"""
OpenAI-compatible REST routes.
"""

import logging
from functools import lru_cache
from typing import AsyncIterator, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry import trace

from ..config import config
from ..core.config import GatewayConfig, build_env, load_config
from ..core.errors import GatewayError
from ..core.interface import AbstractProvider
from ..core.registry import list_available, list_model_cards
from ..core.router import resolve
from ..core.streaming import CancelToken, encode_sse
from ..models.request import ChatRequest
from ..models.response import ChatCompletionChunk, ModelList

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["chat"])

tracer = trace.get_tracer(__name__)


# Set by the main app
_http_client: Optional[httpx.AsyncClient] = None


def set_dependencies(http_client: Optional[httpx.AsyncClient]):
    """Set dependencies from main app."""
    global _http_client
    _http_client = http_client


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.upstream_timeout_seconds))
    return _http_client


@lru_cache()
def get_gateway_config() -> GatewayConfig:
    return load_config(config.gateway_config_path)


def get_env(gateway_config: GatewayConfig = Depends(get_gateway_config)) -> Dict[str, str]:
    """Credentials for this request: file values under the process environment."""
    return build_env(gateway_config)


def get_caller_key(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    """Bearer key forwarded by the caller, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_providers(
    env: Dict[str, str] = Depends(get_env),
    caller_key: Optional[str] = Depends(get_caller_key),
    gateway_config: GatewayConfig = Depends(get_gateway_config),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> List[AbstractProvider]:
    """Backends usable for this request, rebuilt every time."""
    return list_available(
        env,
        caller_key,
        settings=gateway_config.providers,
        http_client=http_client,
        timeout=config.upstream_timeout_seconds,
    )


@router.post("/chat/completions")
async def create_chat_completion(
    request: ChatRequest,
    providers: List[AbstractProvider] = Depends(get_providers),
):
    """Create a chat completion on whichever backend serves the model."""
    with tracer.start_as_current_span("route_chat_completion") as span:
        span.set_attribute("model", request.model)
        span.set_attribute("stream", bool(request.stream))
        span.set_attribute("available_providers", len(providers))

        provider = resolve(request.model, providers)
        span.set_attribute("provider", provider.name)

    if not request.stream:
        response = await provider.invoke(request)
        return JSONResponse(response.to_openai_format())

    return await _stream_completion(provider, request)


async def _stream_completion(provider: AbstractProvider, request: ChatRequest) -> StreamingResponse:
    """
    Relay a backend stream as Server-Sent Events.

    The first chunk is pulled before the response starts, so a backend
    that fails before producing output is reported as a plain JSON error
    with its own status. Failures after that arrive as one
    {"error": ...} event that ends the stream.
    """
    token = CancelToken()
    chunks = provider.stream(request, cancel_token=token)

    try:
        first: Optional[ChatCompletionChunk] = await chunks.__anext__()
    except StopAsyncIteration:
        first = None
    except GatewayError:
        await chunks.aclose()
        raise

    async def event_source() -> AsyncIterator[str]:
        try:
            if first is not None:
                yield encode_sse(first.to_openai_format())
            async for chunk in chunks:
                yield encode_sse(chunk.to_openai_format())
        except GatewayError as e:
            logger.warning(f"Stream from {provider.name} failed: {e.message}")
            yield encode_sse({"error": e.message})
        finally:
            # Caller disconnects land here too
            token.cancel()
            await chunks.aclose()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/models")
async def list_models(providers: List[AbstractProvider] = Depends(get_providers)):
    """List every model served by a currently available backend."""
    return ModelList(data=list_model_cards(providers)).model_dump()
