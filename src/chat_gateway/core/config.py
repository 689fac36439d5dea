"""
Configuration loading for the backend registry.

The YAML file is optional. It can supply credentials (``env``) and
per-backend overrides (``providers``); the process environment always
wins over values from the file.
"""

import os
import re
import logging
from typing import Dict, List, Any, Mapping, Optional
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class ProviderSettings:
    """Overrides for a single backend."""
    enabled: bool = True
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    models: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProviderSettings":
        data = data or {}
        timeout = data.get("timeout")
        return cls(
            enabled=bool(data.get("enabled", True)),
            base_url=data.get("base_url") or None,
            timeout=float(timeout) if timeout is not None else None,
            models=[str(m) for m in data.get("models") or []],
        )


@dataclass
class GatewayConfig:
    """Complete gateway configuration."""
    env: Dict[str, str] = field(default_factory=dict)
    providers: Dict[str, ProviderSettings] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GatewayConfig":
        data = _expand(data or {})
        return cls(
            env={
                str(key): str(value)
                for key, value in (data.get("env") or {}).items()
                if value not in (None, "")
            },
            providers={
                str(name): ProviderSettings.from_dict(settings)
                for name, settings in (data.get("providers") or {}).items()
            },
        )


def _expand(value: Any) -> Any:
    """Expand ${VAR} references from the process environment."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item) for item in value]
    return value


def load_config(config_path: Optional[str] = None) -> GatewayConfig:
    """
    Load gateway configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        Loaded configuration, or an empty one if no usable file exists
    """
    if config_path is None:
        # Try common locations
        paths = [
            Path("config/chat-gateway/gateway.yaml"),
            Path("/etc/chat-gateway/gateway.yaml"),
            Path.home() / ".config/chat-gateway/gateway.yaml",
        ]
        for p in paths:
            if p.exists():
                config_path = str(p)
                break

    if config_path is None or not Path(config_path).exists():
        logger.info("No gateway config file found, using environment only")
        return GatewayConfig()

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ValueError("top level must be a mapping")

        config = GatewayConfig.from_dict(data)
        logger.info(
            f"Loaded gateway config from {config_path}: "
            f"{len(config.env)} env entries, {len(config.providers)} provider overrides"
        )
        return config

    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        return GatewayConfig()


def build_env(
    gateway_config: Optional[GatewayConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Merge file-provided credentials under the process environment."""
    env: Dict[str, str] = {}
    if gateway_config is not None:
        env.update(gateway_config.env)
    env.update(os.environ if environ is None else environ)
    return env
