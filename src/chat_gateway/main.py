"""
Chat Gateway Service

A FastAPI service exposing one OpenAI-compatible chat-completion API
in front of many LLM backends:
- Per-request backend registry built from credentials
- Model-name routing with a fixed priority order
- Native protocol adapters for every backend
- Canonical Server-Sent Events streaming
"""

import logging
from typing import Optional
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource

from .config import config
from .core.errors import GatewayError
from .api.routes import router, set_dependencies, get_gateway_config

# Configure logging
logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


# Global resources
http_client: Optional[httpx.AsyncClient] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global http_client

    # Setup OpenTelemetry
    tracer_provider = None
    if config.otel_endpoint:
        resource = Resource.create({"service.name": "chat-gateway"})
        tracer_provider = TracerProvider(resource=resource)
        processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otel_endpoint))
        tracer_provider.add_span_processor(processor)
        trace.set_tracer_provider(tracer_provider)

    # Shared upstream client for every adapter
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.upstream_timeout_seconds),
        limits=httpx.Limits(max_connections=200, max_keepalive_connections=50),
    )
    set_dependencies(http_client)

    # Surface config file problems at startup rather than on first request
    get_gateway_config()

    logger.info("Chat gateway service started")
    yield

    # Cleanup
    set_dependencies(None)
    await http_client.aclose()
    if tracer_provider is not None:
        tracer_provider.shutdown()

    logger.info("Chat gateway service stopped")


app = FastAPI(
    title="Chat Gateway",
    description="OpenAI-compatible chat completions routed across LLM backends",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument with OpenTelemetry
FastAPIInstrumentor.instrument_app(app)

# Include API routes
app.include_router(router)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Report gateway and upstream failures as {"error": message}."""
    if exc.provider:
        logger.warning(f"{request.url.path} failed on {exc.provider}: {exc.status_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Invalid request bodies are client errors."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Run the service with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
