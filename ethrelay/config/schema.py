"""Pydantic models for ethrelay configuration validation."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ethrelay.core.validation import ALLOWED_NETWORKS


class UpstreamConfig(BaseModel):
    """Upstream JSON-RPC provider settings.

    Example in ethrelay.json:
        "upstream": {
            "default_network": "sepolia",
            "request_timeout": 15
        }
    """

    model_config = ConfigDict(extra="forbid")

    api_key_env: str = "INFURA_API_KEY"
    """Environment variable containing the provider API key."""

    url_template: str = "https://{network}.infura.io/v3/{api_key}"
    """Endpoint template. Must contain {network} and {api_key} placeholders."""

    default_network: str = "mainnet"
    """Network used when a tool call does not name one."""

    request_timeout: float = Field(default=30.0, gt=0)
    """Timeout in seconds for a single upstream attempt."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    """Attempt budget per call, counting the first attempt."""

    initial_retry_delay_ms: int = Field(default=1000, ge=0)
    """Backoff base: attempt n waits initial_retry_delay_ms * 2**n."""

    @field_validator("url_template")
    @classmethod
    def check_placeholders(cls, v: str) -> str:
        """Reject templates that would drop the network or credential."""
        for placeholder in ("{network}", "{api_key}"):
            if placeholder not in v:
                raise ValueError(f"url_template must contain {placeholder}")
        return v

    @field_validator("default_network")
    @classmethod
    def check_network(cls, v: str) -> str:
        """Only allowlisted networks may be the default."""
        if v not in ALLOWED_NETWORKS:
            raise ValueError(f"unsupported network: {v}")
        return v


class SessionConfig(BaseModel):
    """Networked-session limits."""

    model_config = ConfigDict(extra="forbid")

    max_sessions: int = Field(default=1000, ge=1)
    timeout_ms: int = Field(default=1_800_000, gt=0)
    """Idle time after which a session is evicted by the sweep."""

    max_lifetime_ms: int | None = Field(default=None, gt=0)
    """Optional hard cap on session age from admission, independent of activity."""

    sweep_interval_ms: int = Field(default=300_000, gt=0)
    heartbeat_interval_ms: int = Field(default=30_000, gt=0)


class SecurityConfig(BaseModel):
    """Host validation, CORS and rate limiting for networked mode."""

    model_config = ConfigDict(extra="forbid")

    allowed_hosts: list[str] = ["localhost", "127.0.0.1"]
    """Hostnames accepted in the Host header (DNS rebinding protection)."""

    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
    ]
    """Origins that receive CORS headers."""

    rate_limit_window_ms: int = Field(default=60_000, gt=0)
    rate_limit_max_requests: int = Field(default=100, ge=1)
    max_body_size: int = Field(default=100 * 1024, gt=0)
    """Largest accepted request body in bytes."""


class ServerConfig(BaseModel):
    """HTTP listener settings."""

    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    port: int = Field(default=3001, ge=0, le=65535)
    max_concurrent: int = Field(default=32, ge=1)
    """Concurrent non-stream connections."""

    allow_remote_bind: bool = False
    """Permit binding to a non-loopback address (e.g. 0.0.0.0 in a container)."""


class OutputConfig(BaseModel):
    """Tool result formatting."""

    model_config = ConfigDict(extra="forbid")

    character_limit: int = Field(default=100_000, ge=1000)


class Config(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    upstream: UpstreamConfig = UpstreamConfig()
    sessions: SessionConfig = SessionConfig()
    security: SecurityConfig = SecurityConfig()
    server: ServerConfig = ServerConfig()
    output: OutputConfig = OutputConfig()
