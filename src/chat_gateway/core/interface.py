"""
Abstract provider interface.

Defines the contract that every backend adapter implements.
"""

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Iterable, List, Optional, Tuple

import httpx

from .errors import upstream_errors
from .streaming import CancelToken, StreamEvent, StreamTranslator
from ..models.request import ChatRequest
from ..models.response import ChatCompletionChunk, ChatResponse, ModelCard

logger = logging.getLogger(__name__)


class AbstractProvider(ABC):
    """
    Abstract base class for backend adapters.

    Subclasses translate the canonical request into the backend's
    native call (_complete, _stream_events); this class normalizes
    errors and runs native stream events through StreamTranslator.
    """

    # Backend streams report the whole text so far rather than increments
    snapshot_stream: bool = False

    def __init__(
        self,
        name: str,
        supported_models: Iterable[str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize the adapter.

        Args:
            name: Backend name as published in /v1/models owned_by
            supported_models: Model identifiers this backend serves
            http_client: Shared client; one is created on connect() if omitted
            timeout: Per-request timeout in seconds
        """
        self._name = name
        self._supported_models: Tuple[str, ...] = tuple(dict.fromkeys(supported_models))
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self._name

    @property
    def supported_models(self) -> Tuple[str, ...]:
        return self._supported_models

    def supports(self, model: str) -> bool:
        return model in self._supported_models

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self.connect()
        return self._client

    def connect(self) -> None:
        """Create a private HTTP client when none was injected."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True

    async def disconnect(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def invoke(self, request: ChatRequest) -> ChatResponse:
        """
        Create a non-streaming chat completion.

        Raises:
            UpstreamError: If the backend call fails
        """
        logger.debug(f"{self._name}: invoking {request.model}")
        with upstream_errors(self._name):
            return await self._complete(request)

    async def stream(
        self,
        request: ChatRequest,
        cancel_token: Optional[CancelToken] = None,
    ) -> AsyncIterator[ChatCompletionChunk]:
        """
        Create a streaming chat completion.

        Yields canonical chunks as the backend produces them and stops
        once cancel_token is cancelled.
        """
        logger.debug(f"{self._name}: streaming {request.model}")
        translator = StreamTranslator(
            model=request.model,
            snapshot=self.snapshot_stream,
            cancel_token=cancel_token,
        )
        chunks = translator.translate(self._stream_events(request))
        try:
            with upstream_errors(self._name):
                async for chunk in chunks:
                    yield chunk
        finally:
            # Releases the upstream connection when the caller stops early
            await chunks.aclose()

    def model_cards(self, created: Optional[int] = None) -> List[ModelCard]:
        """Describe every supported model for /v1/models."""
        extra = {"created": created} if created is not None else {}
        return [
            ModelCard(id=model, owned_by=self._name, **extra)
            for model in self._supported_models
        ]

    @abstractmethod
    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Perform the native non-streaming call."""

    @abstractmethod
    def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Perform the native streaming call, yielding normalized events."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r})"
