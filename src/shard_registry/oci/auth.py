"""Registry challenge/response authentication.

Implements the Docker Registry v2 authentication flow. A registry answers an
unauthenticated request with 401 and a ``WWW-Authenticate`` challenge; the
client answers a ``Basic`` challenge by attaching credentials and a
``Bearer`` challenge by exchanging credentials for a token at the challenge
realm.

Authentication Flow (per registry host and scope):
    1. Unauthenticated: requests go out without an Authorization header
    2. ChallengeReceived: a 401 challenge names scheme, realm, service, scope
    3. Authenticated: a BasicAuth or cached BearerAuth is attached

Token Cache:
    Bearer tokens are cached per (realm, service, scope) and expire after the
    issuer's ``expires_in`` (or a conservative default). The cache belongs to
    one AuthNegotiator; there is no process-wide state. Token fetches are
    serialized per key, so concurrent requests for one scope share a single
    fetch. A fetch that is cancelled or fails leaves no entry behind.

Example:
    >>> negotiator = AuthNegotiator(transport, Credentials.from_token(token))
    >>> auth = negotiator.authorization_for("ghcr.io", "repository:owner/repo:pull")
    >>> response = await transport.request("GET", url, headers=auth.headers())
    >>> if response.status == 401:
    ...     auth = await negotiator.negotiate(
    ...         "ghcr.io", "repository:owner/repo:pull",
    ...         response.headers.get("WWW-Authenticate"), rejected=auth,
    ...     )
"""

from __future__ import annotations

import asyncio
import base64
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple, Union
from urllib.parse import urlencode, urlsplit

import structlog

from shard_registry.errors import AuthError, ProtocolError, error_from_response
from shard_registry.oci.metrics import RegistryMetrics

if TYPE_CHECKING:
    from shard_registry.oci.transport import Transport

logger = structlog.get_logger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 60.0
"""Token lifetime assumed when the issuer sends no expires_in."""

TOKEN_USERNAME = "token"
"""Username paired with a personal access token (GHCR accepts any)."""

_AUTH_PARAM = re.compile(r'\s*([A-Za-z][A-Za-z0-9_-]*)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^\s,"]*))\s*(,|$)')


# =============================================================================
# Credentials and AuthInfo
# =============================================================================


@dataclass(frozen=True)
class Credentials:
    """Container for registry credentials.

    Attributes:
        username: Username for basic auth and token requests.
        password: Password or personal access token.
    """

    username: str
    password: str = field(repr=False)

    @classmethod
    def from_token(cls, token: str) -> Credentials:
        """Build credentials for a bare access token."""
        return cls(username=TOKEN_USERNAME, password=token)

    def basic_header(self) -> str:
        """Return the ``Basic`` Authorization header value."""
        raw = f"{self.username}:{self.password}".encode()
        return f"Basic {base64.b64encode(raw).decode('ascii')}"


@dataclass(frozen=True)
class NoAuth:
    """No credential attached."""

    def headers(self) -> dict[str, str]:
        return {}


@dataclass(frozen=True)
class BasicAuth:
    """Credentials attached directly with the Basic scheme."""

    username: str
    password: str = field(repr=False)

    def headers(self) -> dict[str, str]:
        return {"Authorization": Credentials(self.username, self.password).basic_header()}


@dataclass(frozen=True)
class BearerAuth:
    """A bearer token issued by a token endpoint."""

    token: str = field(repr=False)

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


AuthInfo = Union[NoAuth, BasicAuth, BearerAuth]
"""Negotiated credential; exactly one variant is active."""


# =============================================================================
# Challenges
# =============================================================================


class AuthScheme(str, Enum):
    """Authentication schemes a registry may challenge with."""

    BASIC = "basic"
    BEARER = "bearer"


class AuthState(str, Enum):
    """Negotiation state for one registry host and scope."""

    UNAUTHENTICATED = "unauthenticated"
    CHALLENGE_RECEIVED = "challenge_received"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthChallenge:
    """A parsed ``WWW-Authenticate`` challenge.

    Attributes:
        scheme: Challenge scheme.
        params: Challenge parameters with lowercase keys.
    """

    scheme: AuthScheme
    params: dict[str, str] = field(default_factory=dict)

    @property
    def realm(self) -> str | None:
        return self.params.get("realm")

    @property
    def service(self) -> str | None:
        return self.params.get("service")

    @property
    def scope(self) -> str | None:
        return self.params.get("scope")


def parse_www_authenticate(header: str | None) -> AuthChallenge:
    """Parse a ``WWW-Authenticate`` header value.

    Args:
        header: Raw header, e.g. ``Bearer realm="https://ghcr.io/token",
            service="ghcr.io",scope="repository:owner/repo:pull"``.

    Returns:
        The parsed challenge.

    Raises:
        ProtocolError: If the header is missing, names an unsupported
            scheme, or has malformed parameters.
    """
    if header is None or not header.strip():
        raise ProtocolError("Missing WWW-Authenticate challenge")

    scheme_name, _, rest = header.strip().partition(" ")
    try:
        scheme = AuthScheme(scheme_name.lower())
    except ValueError as e:
        raise ProtocolError(f"Unsupported authentication scheme: {scheme_name!r}") from e

    params: dict[str, str] = {}
    pos = 0
    rest = rest.strip()
    while pos < len(rest):
        match = _AUTH_PARAM.match(rest, pos)
        if match is None or match.end() == pos:
            raise ProtocolError(f"Malformed WWW-Authenticate header: {header!r}")
        key, quoted, token, _ = match.groups()
        value = quoted if quoted is not None else token
        params[key.lower()] = re.sub(r"\\(.)", r"\1", value)
        pos = match.end()

    return AuthChallenge(scheme=scheme, params=params)


# =============================================================================
# Token cache
# =============================================================================


class TokenKey(NamedTuple):
    """Cache key of a bearer token."""

    realm: str
    service: str
    scope: str


@dataclass(frozen=True)
class _CachedToken:
    token: str
    expires_at: float


@dataclass
class _KeyLock:
    """Single-flight lock for one token key and the number of tasks using it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class TokenCache:
    """Bearer tokens keyed by (realm, service, scope), expiring on a monotonic clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[TokenKey, _CachedToken] = {}

    def get(self, key: TokenKey) -> str | None:
        """Return the cached token, dropping it first if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.token

    def put(self, key: TokenKey, token: str, ttl_seconds: float) -> None:
        self._entries[key] = _CachedToken(token, self._clock() + ttl_seconds)

    def purge(self, key: TokenKey, token: str | None = None) -> bool:
        """Remove an entry; when ``token`` is given, only if it is still cached.

        Returns:
            True if an entry was removed.
        """
        entry = self._entries.get(key)
        if entry is None or (token is not None and entry.token != token):
            return False
        del self._entries[key]
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != len(TokenKey._fields):
            return False
        return self.get(TokenKey(*key)) is not None


# =============================================================================
# Negotiator
# =============================================================================


class AuthNegotiator:
    """Answers registry authentication challenges and caches bearer tokens.

    One negotiator is shared by every request of a client. It holds the
    challenge last seen per (host, scope) so that later requests attach
    cached credentials up front instead of waiting for another 401.

    Example:
        >>> negotiator = AuthNegotiator(transport, Credentials("user", "secret"))
        >>> negotiator.state("ghcr.io", "repository:owner/repo:pull")
        <AuthState.UNAUTHENTICATED: 'unauthenticated'>
    """

    def __init__(
        self,
        transport: Transport,
        credentials: Credentials | None = None,
        *,
        default_ttl: float = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        metrics: RegistryMetrics | None = None,
    ) -> None:
        """Initialize AuthNegotiator.

        Args:
            transport: Transport used for token endpoint requests.
            credentials: Credentials for Basic auth and token requests.
                None means anonymous access.
            default_ttl: Token lifetime when the issuer sends no expires_in.
            clock: Monotonic clock, injectable for tests.
            metrics: Metrics collector. A default one is created if None.
        """
        self._transport = transport
        self._credentials = credentials
        self._default_ttl = default_ttl
        self._cache = TokenCache(clock)
        self._metrics = metrics or RegistryMetrics()
        self._challenges: dict[tuple[str, str], AuthChallenge] = {}
        self._locks: dict[TokenKey, _KeyLock] = {}

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    @property
    def cache(self) -> TokenCache:
        return self._cache

    def state(self, host: str, scope: str) -> AuthState:
        """Return the negotiation state for ``host`` and ``scope``."""
        challenge = self._challenges.get((host, scope))
        if challenge is None:
            return AuthState.UNAUTHENTICATED
        if isinstance(self.authorization_for(host, scope), NoAuth):
            return AuthState.CHALLENGE_RECEIVED
        return AuthState.AUTHENTICATED

    def authorization_for(self, host: str, scope: str) -> AuthInfo:
        """Return the credential to attach up front, without network access."""
        challenge = self._challenges.get((host, scope))
        if challenge is None:
            return NoAuth()
        if challenge.scheme is AuthScheme.BASIC:
            if self._credentials is None:
                return NoAuth()
            return BasicAuth(self._credentials.username, self._credentials.password)

        token = self._cache.get(self._token_key(host, scope, challenge))
        if token is None:
            return NoAuth()
        self._metrics.record_token_request(host, "hit")
        return BearerAuth(token)

    async def negotiate(
        self,
        host: str,
        scope: str,
        header: str | None,
        *,
        rejected: AuthInfo | None = None,
    ) -> AuthInfo:
        """Answer a 401 challenge.

        Args:
            host: Registry host that issued the challenge.
            scope: Scope the request needed (``repository:<name>:pull``).
            header: The ``WWW-Authenticate`` header of the 401 response.
            rejected: The credential the 401 response rejected, if any.

        Returns:
            The credential to attach when retrying the request.

        Raises:
            AuthError: If the challenge cannot be answered.
            ProtocolError: If the challenge or token response is malformed.
        """
        if header is None or not header.strip():
            raise AuthError(host, "registry returned 401 without a WWW-Authenticate challenge")
        challenge = parse_www_authenticate(header)
        self._challenges[(host, scope)] = challenge
        logger.debug(
            "auth_challenge_received",
            registry=host,
            scope=scope,
            scheme=challenge.scheme.value,
            realm=challenge.realm,
        )

        if challenge.scheme is AuthScheme.BASIC:
            if self._credentials is None:
                raise AuthError(host, "registry requires Basic credentials and none are configured")
            return BasicAuth(self._credentials.username, self._credentials.password)

        key = self._token_key(host, scope, challenge)
        if isinstance(rejected, BearerAuth) and self._cache.purge(key, rejected.token):
            self._metrics.record_token_request(host, "rejected")
            logger.info("auth_token_rejected", registry=host, scope=key.scope)
        return BearerAuth(await self._token_for(host, key))

    def invalidate(self, host: str, scope: str) -> None:
        """Forget the challenge and any cached token for ``host`` and ``scope``."""
        challenge = self._challenges.pop((host, scope), None)
        if challenge is not None and challenge.scheme is AuthScheme.BEARER:
            self._cache.purge(self._token_key(host, scope, challenge))

    def _token_key(self, host: str, scope: str, challenge: AuthChallenge) -> TokenKey:
        return TokenKey(
            realm=challenge.realm or "",
            service=challenge.service or host,
            scope=challenge.scope or scope,
        )

    async def _token_for(self, host: str, key: TokenKey) -> str:
        token = self._cache.get(key)
        if token is not None:
            return token

        key_lock = self._locks.setdefault(key, _KeyLock())
        key_lock.users += 1
        try:
            async with key_lock.lock:
                token = self._cache.get(key)
                if token is not None:
                    self._metrics.record_token_request(host, "hit")
                    return token
                token, ttl = await self._fetch_token(host, key)
                self._cache.put(key, token, ttl)
                self._metrics.record_token_request(host, "fetched")
                return token
        finally:
            key_lock.users -= 1
            if not key_lock.users:
                del self._locks[key]

    async def _fetch_token(self, host: str, key: TokenKey) -> tuple[str, float]:
        realm = urlsplit(key.realm)
        if realm.scheme not in ("http", "https") or not realm.netloc:
            raise ProtocolError(f"Invalid token realm in challenge from {host}: {key.realm!r}")

        query = {"service": key.service, "scope": key.scope}
        headers = {"Accept": "application/json"}
        if self._credentials is not None:
            query["account"] = self._credentials.username
            headers["Authorization"] = self._credentials.basic_header()
        separator = "&" if realm.query else "?"
        url = f"{key.realm}{separator}{urlencode(query)}"

        with self._metrics.create_span(
            RegistryMetrics.SPAN_AUTH,
            {"registry": host, "auth.realm": key.realm, "auth.scope": key.scope},
        ):
            response = await self._transport.request("GET", url, headers=headers)
            if not response.ok:
                raise error_from_response(response, registry=host, context="obtain registry token")

            document = response.json()
            if not isinstance(document, dict):
                raise ProtocolError(f"Token response from {key.realm} is not a JSON object")
            token = document.get("token") or document.get("access_token")
            if not isinstance(token, str) or not token:
                raise ProtocolError(f"Token response from {key.realm} contains no token")

            ttl = self._default_ttl
            expires_in = document.get("expires_in")
            if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
                ttl = float(expires_in)

        logger.debug("auth_token_fetched", registry=host, scope=key.scope, ttl_seconds=ttl)
        return token, ttl


__all__ = [
    "DEFAULT_TOKEN_TTL_SECONDS",
    "AuthChallenge",
    "AuthInfo",
    "AuthNegotiator",
    "AuthScheme",
    "AuthState",
    "BasicAuth",
    "BearerAuth",
    "Credentials",
    "NoAuth",
    "TokenCache",
    "TokenKey",
    "parse_www_authenticate",
]
