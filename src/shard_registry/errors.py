"""Registry client exception taxonomy for shard-registry.

Every failure raised by the registry client, the auth negotiator and the
marketplace sync is a RegistryError. Each error carries a machine-readable
``kind`` so callers can branch with ``match error.kind:`` instead of chains of
isinstance checks, map the failure to a CLI exit code, or decide whether a
retry makes sense.

Exception Hierarchy:
    RegistryError (base)
    ├── FormatError                # Malformed identifier, tag or digest
    ├── AuthError                  # Credentials rejected after bounded retry
    ├── ProtocolError              # Malformed registry response
    ├── DigestMismatchError        # Content digest verification failed
    ├── UnsupportedManifestError   # Legacy schema or unknown media type
    ├── RegistryTimeoutError       # Caller deadline exceeded (retryable)
    ├── RegistryUnavailableError   # Registry not reachable (retryable)
    └── HttpError                  # Any other non-2xx response
        ├── NotFoundError          # 404
        └── RateLimitError         # 429 (retryable)

Exit Codes:
    0 - Success
    1 - General error (ProtocolError, HttpError)
    2 - Authentication error (AuthError)
    3 - Not found (NotFoundError)
    4 - Invalid input (FormatError)
    5 - Network/connectivity (RegistryUnavailableError, RegistryTimeoutError,
        RateLimitError)
    6 - Integrity (DigestMismatchError, UnsupportedManifestError)

Example:
    >>> from shard_registry.errors import NotFoundError, exit_code_for
    >>> try:
    ...     await client.get_manifest("ghcr.io/owner/repo", "v9.9.9")
    ... except RegistryError as e:
    ...     sys.exit(exit_code_for(e.kind))
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shard_registry.oci.transport import TransportResponse


class ErrorKind(str, Enum):
    """Machine-readable error kinds shared by every component."""

    FORMAT = "format"
    AUTH = "auth"
    PROTOCOL = "protocol"
    DIGEST_MISMATCH = "digest_mismatch"
    UNSUPPORTED_MANIFEST = "unsupported_manifest"
    HTTP = "http"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RegistryErrorDetail:
    """One entry of a registry ``{"errors": [...]}`` response body.

    Attributes:
        code: Registry error code (e.g. ``MANIFEST_UNKNOWN``).
        message: Human-readable message from the registry.
        detail: Optional structured detail as returned by the registry.
    """

    code: str | None
    message: str | None
    detail: Any = None


class RegistryError(Exception):
    """Base exception for all registry client errors.

    All registry exceptions inherit from this class, allowing callers
    to catch every registry failure with a single except clause.

    Attributes:
        kind: Machine-readable error kind.
        message: Human-readable description.
        code: Registry error code when the registry supplied one.
        detail: Optional extra payload describing the failure.

    Example:
        >>> try:
        ...     tags = await client.list_tags(repo).collect()
        ... except RegistryError as e:
        ...     print(f"{e.kind.value}: {e}")
    """

    kind: ErrorKind = ErrorKind.PROTOCOL

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        detail: Any = None,
    ) -> None:
        self.message = message
        self.code = code
        self.detail = detail
        super().__init__(message)

    @property
    def exit_code(self) -> int:
        """Return the CLI exit code for this error."""
        return exit_code_for(self.kind)

    @property
    def retryable(self) -> bool:
        """Return True if a convenience wrapper may retry this error."""
        return is_retryable(self)


class FormatError(RegistryError):
    """Raised when an identifier, tag or digest string is malformed.

    Example:
        >>> normalize("ghcr.io")
        Traceback (most recent call last):
            ...
        FormatError: Namespace must contain at least one "/" ...
    """

    kind = ErrorKind.FORMAT


class AuthError(RegistryError):
    """Raised when registry authentication fails.

    Raised after the single permitted re-authentication attempt has been
    used up, when a token endpoint rejects the credentials, or when a
    challenge cannot be answered because no credentials are configured.

    Attributes:
        registry: Registry host where authentication failed.
        reason: Description of why authentication failed.
    """

    kind = ErrorKind.AUTH

    def __init__(self, registry: str, reason: str, **kwargs: Any) -> None:
        """Initialize AuthError.

        Args:
            registry: Registry host where authentication failed.
            reason: Description of why authentication failed.
            **kwargs: Optional ``code``/``detail`` forwarded to RegistryError.
        """
        self.registry = registry
        self.reason = reason
        super().__init__(f"Authentication failed for {registry}: {reason}", **kwargs)


class ProtocolError(RegistryError):
    """Raised when a registry response cannot be understood.

    Covers invalid JSON bodies, malformed Link or WWW-Authenticate
    headers and payloads that fail validation. When raised during tag
    pagination, ``partial_tags`` holds every tag gathered before the
    failure so callers can still use the partial listing.

    Attributes:
        partial_tags: Tags gathered before pagination stopped.
    """

    kind = ErrorKind.PROTOCOL

    def __init__(
        self,
        message: str,
        *,
        partial_tags: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        self.partial_tags = list(partial_tags) if partial_tags else []
        super().__init__(message, **kwargs)


class DigestMismatchError(RegistryError):
    """Raised when fetched content does not hash to the advertised digest.

    Indicates tampering or corruption between registry and client.

    Attributes:
        expected: Digest advertised by the registry or the reference.
        actual: Digest computed over the received bytes.
    """

    kind = ErrorKind.DIGEST_MISMATCH

    def __init__(self, expected: str, actual: str, *, reference: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.reference = reference
        target = f" for {reference}" if reference else ""
        super().__init__(
            f"Digest mismatch{target}: expected {expected}, computed {actual}",
            detail={"expected": expected, "actual": actual},
        )


class UnsupportedManifestError(RegistryError):
    """Raised for schema version 1 manifests or unknown media types.

    Attributes:
        media_type: Media type of the rejected payload, if known.
        schema_version: Schema version of the rejected payload, if known.
    """

    kind = ErrorKind.UNSUPPORTED_MANIFEST

    def __init__(
        self,
        reason: str,
        *,
        media_type: str | None = None,
        schema_version: int | None = None,
    ) -> None:
        self.media_type = media_type
        self.schema_version = schema_version
        super().__init__(f"Unsupported manifest: {reason}")


class RegistryTimeoutError(RegistryError):
    """Raised when an operation exceeds the caller's deadline.

    Kept distinct from HttpError so that callers can apply their own retry
    policy to deadline overruns.

    Attributes:
        operation: Name of the operation that timed out.
        timeout: Deadline in seconds, if known.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, operation: str, timeout: float | None = None) -> None:
        self.operation = operation
        self.timeout = timeout
        suffix = f" after {timeout:g}s" if timeout is not None else ""
        super().__init__(f"Deadline exceeded for {operation}{suffix}")


class RegistryUnavailableError(RegistryError):
    """Raised when the registry cannot be reached at the transport level.

    Attributes:
        url: URL of the request that failed.
        reason: Description of the connection failure.
    """

    kind = ErrorKind.UNAVAILABLE

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Registry unavailable at {url}: {reason}")


class HttpError(RegistryError):
    """Raised for non-2xx registry responses not covered by another kind.

    Attributes:
        status: HTTP status code.
        errors: Parsed registry error entries (may be empty).
        response: The raw transport response.
    """

    kind = ErrorKind.HTTP

    def __init__(
        self,
        status: int,
        message: str,
        *,
        errors: list[RegistryErrorDetail] | None = None,
        response: TransportResponse | None = None,
    ) -> None:
        self.status = status
        self.errors = list(errors) if errors else []
        self.response = response
        first = self.errors[0] if self.errors else None
        super().__init__(
            message,
            code=first.code if first else None,
            detail=first.detail if first else None,
        )


class NotFoundError(HttpError):
    """Raised when the registry answers 404 for a repository, tag or manifest."""

    kind = ErrorKind.NOT_FOUND


class RateLimitError(HttpError):
    """Raised when the registry answers 429.

    Attributes:
        retry_after: Seconds to wait before retrying, from ``Retry-After``.
    """

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        status: int,
        message: str,
        *,
        retry_after: float | None = None,
        errors: list[RegistryErrorDetail] | None = None,
        response: TransportResponse | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(status, message, errors=errors, response=response)


def exit_code_for(kind: ErrorKind) -> int:
    """Map an error kind to a CLI exit code.

    Args:
        kind: The error kind.

    Returns:
        Exit code (see module docstring).
    """
    match kind:
        case ErrorKind.AUTH:
            return 2
        case ErrorKind.NOT_FOUND:
            return 3
        case ErrorKind.FORMAT:
            return 4
        case ErrorKind.UNAVAILABLE | ErrorKind.TIMEOUT | ErrorKind.RATE_LIMIT:
            return 5
        case ErrorKind.DIGEST_MISMATCH | ErrorKind.UNSUPPORTED_MANIFEST:
            return 6
        case ErrorKind.PROTOCOL | ErrorKind.HTTP:
            return 1


def is_retryable(error: BaseException) -> bool:
    """Check whether a convenience wrapper may retry after ``error``.

    Transient kinds are retryable: deadline overruns, unreachable registries,
    rate limiting and 5xx responses. Everything else fails fast.

    Args:
        error: The raised exception.

    Returns:
        True if the error is transient.
    """
    if not isinstance(error, RegistryError):
        return False
    match error.kind:
        case ErrorKind.TIMEOUT | ErrorKind.UNAVAILABLE | ErrorKind.RATE_LIMIT:
            return True
        case ErrorKind.HTTP:
            return isinstance(error, HttpError) and error.status >= 500
        case _:
            return False


def parse_registry_errors(body: bytes) -> list[RegistryErrorDetail]:
    """Parse a registry error body into RegistryErrorDetail entries.

    Non-JSON bodies and bodies without an ``errors`` list yield an empty list.

    Args:
        body: Raw response body.

    Returns:
        Parsed error entries.
    """
    try:
        document = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return []
    if not isinstance(document, dict):
        return []
    entries = document.get("errors")
    if not isinstance(entries, list):
        return []

    details: list[RegistryErrorDetail] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        code = entry.get("code")
        message = entry.get("message")
        details.append(
            RegistryErrorDetail(
                code=str(code) if code is not None else None,
                message=str(message) if message is not None else None,
                detail=entry.get("detail"),
            )
        )
    return details


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        # HTTP-date form is not used by registries in practice
        return None
    if not math.isfinite(seconds):
        return None
    return max(seconds, 0.0)


def error_from_response(
    response: TransportResponse,
    *,
    registry: str,
    context: str,
) -> RegistryError:
    """Build the RegistryError matching a non-2xx response.

    Args:
        response: The failed transport response.
        registry: Registry host, used for auth errors.
        context: Short description of the request (e.g. ``list tags for x``).

    Returns:
        AuthError for 401/403, NotFoundError for 404, RateLimitError for 429
        and HttpError for anything else.
    """
    errors = parse_registry_errors(response.body)
    first = errors[0] if errors else None
    reason = None
    if first is not None:
        reason = first.message or (str(first.detail) if first.detail else None)
    message = f"Failed to {context}: HTTP {response.status}"
    if reason:
        message = f"{message} ({reason})"

    status = response.status
    if status in (401, 403):
        return AuthError(
            registry,
            reason or f"HTTP {status} while trying to {context}",
            code=first.code if first else None,
        )
    if status == 404:
        return NotFoundError(status, message, errors=errors, response=response)
    if status == 429:
        return RateLimitError(
            status,
            message,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            errors=errors,
            response=response,
        )
    return HttpError(status, message, errors=errors, response=response)


__all__ = [
    "AuthError",
    "DigestMismatchError",
    "ErrorKind",
    "FormatError",
    "HttpError",
    "NotFoundError",
    "ProtocolError",
    "RateLimitError",
    "RegistryError",
    "RegistryErrorDetail",
    "RegistryTimeoutError",
    "RegistryUnavailableError",
    "UnsupportedManifestError",
    "error_from_response",
    "exit_code_for",
    "is_retryable",
    "parse_registry_errors",
]
