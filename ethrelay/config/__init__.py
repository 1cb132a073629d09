"""Configuration loading and validation."""

from ethrelay.config.loader import load_config
from ethrelay.config.schema import (
    Config,
    OutputConfig,
    SecurityConfig,
    ServerConfig,
    SessionConfig,
    UpstreamConfig,
)

__all__ = [
    "Config",
    "OutputConfig",
    "SecurityConfig",
    "ServerConfig",
    "SessionConfig",
    "UpstreamConfig",
    "load_config",
]
