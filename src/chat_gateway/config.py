"""
Configuration for the chat gateway service.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Application configuration."""

    # Server
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS
    cors_origin: str = os.getenv("CORS_ORIGIN", "*")

    # OpenTelemetry (tracing disabled when unset)
    otel_endpoint: Optional[str] = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None

    # Provider config file (credentials and per-backend overrides)
    gateway_config_path: Optional[str] = os.getenv("GATEWAY_CONFIG") or None

    # Upstream calls
    upstream_timeout_seconds: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))

    @property
    def cors_origins(self):
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]


config = Config()
