"""ethrelay: session-aware relay in front of an Ethereum JSON-RPC provider."""

__version__ = "0.2.0"

SERVER_NAME = "ethrelay"
