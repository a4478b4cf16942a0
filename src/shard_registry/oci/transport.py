"""HTTP transport boundary for registry operations.

The registry client never opens sockets itself. Every request goes through a
Transport, an injected object with a single ``request`` coroutine. Tests
substitute a fake; production code uses HttpxTransport.

Key Components:
    Transport: Protocol implemented by every transport
    TransportResponse: Status, case-insensitive headers and raw body
    HttpxTransport: httpx.AsyncClient-backed implementation

Example:
    >>> async with HttpxTransport() as transport:
    ...     client = ManifestClient(transport)
    ...     tags = await client.list_tags("ghcr.io/owner/repo").collect()
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from shard_registry.errors import ProtocolError, RegistryTimeoutError, RegistryUnavailableError
from shard_registry.schemas.config import DEFAULT_USER_AGENT, RegistryClientConfig

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
"""Socket-level timeout of the default httpx client."""


@dataclass(frozen=True)
class TransportResponse:
    """A completed HTTP exchange.

    Attributes:
        status: HTTP status code.
        headers: Response headers; lookups are case-insensitive.
        body: Raw response body.
        url: Final URL of the request, after redirects.
    """

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    url: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            object.__setattr__(self, "headers", httpx.Headers(self.headers))

    @property
    def ok(self) -> bool:
        """Return True for 2xx statuses."""
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        """Return the body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ProtocolError: If the body is not valid JSON.
        """
        try:
            return json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as e:
            target = f" from {self.url}" if self.url else ""
            raise ProtocolError(f"Invalid JSON response{target}: {e}") from e


@runtime_checkable
class Transport(Protocol):
    """Injected HTTP call abstraction.

    Implementations perform exactly one HTTP exchange per call and report
    connection-level failures as RegistryUnavailableError or
    RegistryTimeoutError. Non-2xx statuses are returned, not raised.
    """

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """Perform one HTTP request and return the full response."""
        ...


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``.

    Owns its client unless one is supplied, in which case the caller keeps
    responsibility for closing it.

    Example:
        >>> async with HttpxTransport(timeout=10.0) as transport:
        ...     response = await transport.request("GET", "https://ghcr.io/v2/")
        >>> response.status
        401
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        """Initialize HttpxTransport.

        Args:
            client: Existing AsyncClient to use. Created when None.
            timeout: Socket timeout for an owned client, in seconds.
            user_agent: User-Agent header sent with every request.
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._user_agent = user_agent

    @classmethod
    def from_config(cls, config: RegistryClientConfig, client: httpx.AsyncClient | None = None) -> HttpxTransport:
        """Build a transport using the config's user agent and timeout.

        Example:
            >>> transport = HttpxTransport.from_config(SyncConfig.from_yaml("sync.yaml").registry)
        """
        return cls(
            client,
            timeout=config.timeout_seconds or DEFAULT_TIMEOUT_SECONDS,
            user_agent=config.user_agent,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """Perform one HTTP request.

        Raises:
            RegistryTimeoutError: If httpx reports a timeout.
            RegistryUnavailableError: On any other transport failure.
        """
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(headers)

        try:
            response = await self._client.request(method, url, headers=request_headers)
        except httpx.TimeoutException as e:
            logger.debug("transport_timeout", method=method, url=url)
            raise RegistryTimeoutError(f"{method} {url}") from e
        except httpx.TransportError as e:
            logger.debug("transport_error", method=method, url=url, error=str(e))
            raise RegistryUnavailableError(url, str(e) or type(e).__name__) from e

        return TransportResponse(
            status=response.status_code,
            headers=response.headers,
            body=response.content,
            url=str(response.url),
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "HttpxTransport",
    "Transport",
    "TransportResponse",
]
