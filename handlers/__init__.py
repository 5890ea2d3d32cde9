"""Communication handlers for the speech service.

This package provides the asynchronous HTTP client used by cloud speech engines.
"""

from handlers.async_comm import (
    AsyncCommError,
    AsyncCommInvalidContentTypeError,
    AsyncCommResponseError,
    AsyncCommTimeoutError,
    AsyncHttp,
)

__all__: list[str] = [
    "AsyncCommError",
    "AsyncCommInvalidContentTypeError",
    "AsyncCommResponseError",
    "AsyncCommTimeoutError",
    "AsyncHttp",
]
