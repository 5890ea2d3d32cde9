"""Asynchronous HTTP communication utilities.

`AsyncHttp` wraps an aiohttp session, applies per-request timeouts, decodes responses through
content-type handlers and converts aiohttp failures into the AsyncCommError family.
Error responses keep their status code, headers and body text so callers can classify them.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Final, Literal, Self

import aiohttp
from aiohttp.client import ClientSession

from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from collections.abc import Callable, Mapping

    from aiohttp.client import ClientResponse


__all__: list[str] = [
    "AsyncCommError",
    "AsyncCommInvalidContentTypeError",
    "AsyncCommResponseError",
    "AsyncCommTimeoutError",
    "AsyncHttp",
]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

HTTPMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

CONNECT_TIMEOUT: Final[float] = 3.0
# Bytes of an error body kept for diagnostics
ERROR_BODY_LIMIT: Final[int] = 512


def _passthrough(raw: bytes) -> bytes:
    return raw


class AsyncHttp:
    """Asynchronous HTTP client with content-type based response decoding.

    The default handlers are:
        - "text/plain", "text/html": decoded to str (UTF-8).
        - "application/json": parsed with json.
        - "audio/wav", "audio/x-wav", "audio/wave", "audio/mpeg": returned as raw bytes.
    """

    def __init__(self, *, user_agent: str | None = None) -> None:
        logger.info("%s initializing", self.__class__.__name__)
        self.__session: ClientSession | None = None
        self._user_agent: str | None = user_agent
        self.content_handlers: dict[str, Callable[[bytes], Any]] = {}

        self.add_handler("text/plain", lambda x: x.decode("utf-8"))
        self.add_handler("text/html", lambda x: x.decode("utf-8"))
        self.add_handler("application/json", lambda x: json.loads(x.decode("utf-8")))
        for audio_type in ("audio/wav", "audio/x-wav", "audio/wave", "audio/mpeg"):
            self.add_handler(audio_type, _passthrough)

    async def __aenter__(self) -> Self:
        logger.debug("%s entering context", self.__class__.__name__)
        self.initialize_session(suppress_already_log=True)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        _ = exc_type, exc_val, exc_tb
        logger.debug("%s exiting context", self.__class__.__name__)
        await self.close()

    def initialize_session(self, *, suppress_already_log: bool = False) -> None:
        """Create the aiohttp session if it does not exist or was closed.

        Must be called while an event loop is running.
        """
        if self.__session is None or self.__session.closed:
            headers: dict[str, str] = {"User-Agent": self._user_agent} if self._user_agent else {}
            self.__session = ClientSession(headers=headers)
            logger.debug("%s session initialized", self.__class__.__name__)
        elif not suppress_already_log:
            logger.debug("%s session already initialized", self.__class__.__name__)

    @property
    def session(self) -> ClientSession:
        """Return the current session, creating it on first use."""
        self.initialize_session(suppress_already_log=True)
        if self.__session is None:
            msg = "Session is not initialized"
            raise RuntimeError(msg)
        return self.__session

    @property
    def is_open(self) -> bool:
        return self.__session is not None and not self.__session.closed

    async def close(self) -> None:
        """Close the aiohttp session if it is open."""
        if self.__session and not self.__session.closed:
            await self.__session.close()
            logger.info("%s session closed", self.__class__.__name__)
        self.__session = None

    async def post(
        self,
        *,
        url: str,
        data: str | bytes | None = None,
        headers: Mapping[str, str] | None = None,
        total_timeout: float = 10.0,
    ) -> Any:
        """Perform an asynchronous HTTP POST request with a raw body.

        Args:
            url (str): The URL to send the POST request to.
            data (str | bytes | None): Request body. str bodies are sent UTF-8 encoded.
            headers (Mapping[str, str] | None): Extra request headers.
            total_timeout (float): Total timeout for the request in seconds.
        Returns:
            Any: The response body decoded by the handler registered for its content type.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        return await self._request("POST", url=url, total_timeout=total_timeout, headers=headers, data=data)

    async def decode_response(self, resp: ClientResponse) -> Any:
        """Decode a response body with the handler registered for its content type.

        Returns:
            Any: Decoded body, or None for an empty body.
        Raises:
            AsyncCommInvalidContentTypeError: If no handler is registered for the content type,
                or the handler cannot decode the body.
        """
        content_type: str = resp.headers.get("Content-Type", "").split(";")[0].strip().lower()
        logger.debug("'Content-Type': '%s'", content_type)

        raw: bytes = await resp.read()
        if not raw:
            logger.debug("Received empty response")
            return None

        handler: Callable[[bytes], Any] | None = self.content_handlers.get(content_type)
        if handler is None:
            msg: str = f"Unknown Content-Type '{content_type}'"
            raise AsyncCommInvalidContentTypeError(msg)
        try:
            return handler(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as err:
            msg = f"Undecodable '{content_type}' body"
            raise AsyncCommInvalidContentTypeError(msg) from err

    def add_handler(self, content_type: str, handler: Callable[[bytes], Any]) -> None:
        """Register a decoder for a content type, replacing any existing one."""
        if self.content_handlers.get(content_type):
            logger.warning("Handler for content type '%s' already exists, replacing it", content_type)
        self.content_handlers[content_type] = handler

    @staticmethod
    def _build_timeout(total_timeout: float) -> aiohttp.ClientTimeout:
        if total_timeout <= 0:
            return aiohttp.ClientTimeout(total=None)
        if total_timeout < CONNECT_TIMEOUT:
            # Keep the connect phase inside the total budget
            return aiohttp.ClientTimeout(total=total_timeout)
        return aiohttp.ClientTimeout(connect=CONNECT_TIMEOUT, total=total_timeout)

    async def _request(
        self,
        method: HTTPMethod,
        *,
        url: str,
        total_timeout: float,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Perform an HTTP request and decode the response.

        Raises:
            AsyncCommTimeoutError: The server did not answer in time.
            AsyncCommResponseError: The server answered with a non-2xx status.
            AsyncCommInvalidContentTypeError: The body could not be decoded.
            AsyncCommError: Connection-level failure.
        """
        logger.debug("[%s] url=%s timeout=%s", method, url, total_timeout)

        try:
            async with self.session.request(
                method=method,
                url=url,
                headers=dict(headers or {}),
                timeout=self._build_timeout(total_timeout),
                **kwargs,
            ) as resp:
                if resp.status >= 400:
                    body: bytes = await resp.read()
                    msg = "Error response from the server."
                    raise AsyncCommResponseError(
                        msg,
                        status=resp.status,
                        headers=dict(resp.headers),
                        body=body[:ERROR_BODY_LIMIT].decode("utf-8", errors="replace"),
                    )
                return await self.decode_response(resp)

        except TimeoutError as err:
            logger.debug(err)
            msg = "Timeout due to a lack of response from the server."
            raise AsyncCommTimeoutError(msg) from err
        except ConnectionResetError as err:
            logger.debug(err)
            msg = "The connection to the server has been disconnected."
            raise AsyncCommError(msg) from err
        except aiohttp.ClientConnectorError as err:
            logger.debug(err)
            msg = "The server is not reachable."
            raise AsyncCommError(msg) from err
        except aiohttp.ClientPayloadError as err:
            logger.debug(err)
            msg = "The response payload was truncated or malformed."
            raise AsyncCommError(msg) from err
        except aiohttp.ClientError as err:
            logger.debug(err)
            msg = "HTTP client error."
            raise AsyncCommError(msg) from err


class AsyncCommError(Exception):
    """Base class for asynchronous communication errors."""

    def __init__(self, msg: str | BaseException) -> None:
        self.msg: str = str(msg)
        super().__init__(self.msg)


class AsyncCommTimeoutError(AsyncCommError):
    """The request did not complete within the timeout."""


class AsyncCommInvalidContentTypeError(AsyncCommError):
    """The response content type has no registered handler, or its body could not be decoded."""


class AsyncCommResponseError(AsyncCommError):
    """The server answered with an error status.

    Attributes:
        status (int): HTTP status code.
        headers (dict[str, str]): Response headers.
        body (str): Leading part of the response body.
    """

    def __init__(self, msg: str, *, status: int, headers: dict[str, str] | None = None, body: str = "") -> None:
        self.status: int = status
        self.headers: dict[str, str] = headers or {}
        self.body: str = body
        super().__init__(f"{msg}: status='{status}'")

    @property
    def retry_after(self) -> float | None:
        """Seconds from the Retry-After header, if present and numeric."""
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                try:
                    return max(float(value), 0.0)
                except ValueError:
                    return None
        return None
