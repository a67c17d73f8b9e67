"""
Remote client factory.

create_client() is the single entry point for building the LichessClient
the controller talks to.
"""

from __future__ import annotations

from chesslink.client.base import (
    ClientError,
    LichessClient,
    MissingTokenError,
    RateLimitedError,
)
from chesslink.client.http import HttpLichessClient
from chesslink.config import ClientConfig

__all__ = [
    "ClientError",
    "LichessClient",
    "MissingTokenError",
    "RateLimitedError",
    "HttpLichessClient",
    "create_client",
]


def create_client(config: ClientConfig) -> LichessClient:
    return HttpLichessClient(
        api_base=config.server.api_base,
        token=config.token,
        request_timeout=config.server.request_timeout,
    )
