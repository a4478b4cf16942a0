"""Registry identifier parsing.

Parses strings of the form ``[INDEX/]REPO[:TAG][@DIGEST]`` into immutable
RegistryIndex, RegistryRepo and RegistryImage values. Parsing is pure: the
same input always yields an equal value and nothing is cached.

Examples of accepted identifiers:
    busybox
    google/python:3.3
    docker.io/ubuntu
    ghcr.io/owner/repo:v1.0.0
    localhost:5000/blarg
    http://localhost:5000/blarg:latest
    alpine@sha256:fb9f16730ac6316afa4d97caa5130219927bfcecf0b0ce35c01dcb612f449739

Example:
    >>> image = parse_repo_and_ref("ghcr.io/owner/repo:v1.0.0")
    >>> image.canonical_name, image.tag, image.digest
    ('ghcr.io/owner/repo', 'v1.0.0', None)
"""

from __future__ import annotations

import re

from shard_registry.errors import FormatError
from shard_registry.schemas.registry import (
    DEFAULT_INDEX_NAME,
    RegistryImage,
    RegistryIndex,
    RegistryRepo,
)

DEFAULT_TAG = "latest"
"""Tag used when an image reference carries neither tag nor digest."""

_VALID_NS = re.compile(r"^[a-z0-9._-]*$")
_VALID_REPO = re.compile(r"^[a-z0-9_/.-]*$")
_VALID_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]{0,127}$")
_VALID_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")
_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*)://")


def normalize(raw: str) -> str:
    """Normalize and validate an OCI namespace string.

    Trims surrounding whitespace and trailing slashes until neither
    remains. The result must contain at least one ``/`` and no empty path
    segment. Idempotent.

    Args:
        raw: Namespace as typed by a user (e.g. ``" ghcr.io/owner/repo/ "``).

    Returns:
        The normalized namespace (e.g. ``"ghcr.io/owner/repo"``).

    Raises:
        FormatError: If the namespace has no ``/`` or has consecutive slashes.
    """
    value = raw
    while (trimmed := value.strip().rstrip("/")) != value:
        value = trimmed
    if "/" not in value:
        raise FormatError(
            f'Namespace must contain at least one "/" (e.g. ghcr.io/owner/repo): {raw!r}'
        )
    if "//" in value:
        raise FormatError(f"Namespace cannot contain consecutive slashes: {raw!r}")
    return value


def plugin_repository(namespace: str, plugin_id: str) -> str:
    """Return the repository holding a plugin's releases under ``namespace``."""
    plugin_id = plugin_id.strip()
    if not plugin_id or "/" in plugin_id:
        raise FormatError(f"Invalid plugin id: {plugin_id!r}")
    return f"{normalize(namespace)}/{plugin_id}"


def _is_localhost(host: str) -> bool:
    hostname = host.split(":", 1)[0]
    return hostname in ("localhost", "127.0.0.1")


def parse_index(arg: str | None = None) -> RegistryIndex:
    """Parse a registry index name or index URL.

    Accepts ``docker.io``, ``index.docker.io`` (normalized to ``docker.io``),
    ``https://ghcr.io`` and ``http://localhost:5000``. Without a scheme the
    index is reached over https, except for localhost which uses http.

    Args:
        arg: Index name, optionally with a leading scheme. None means the
            official Docker Hub index.

    Returns:
        The parsed RegistryIndex.

    Raises:
        FormatError: On an unsupported scheme, an empty name, or a path.
    """
    if arg is None:
        return RegistryIndex(name=DEFAULT_INDEX_NAME, scheme="https", official=True)

    value = arg.strip()
    if value == "https://index.docker.io/v1/":
        return RegistryIndex(name=DEFAULT_INDEX_NAME, scheme="https", official=True)

    scheme: str | None = None
    match = _SCHEME.match(value)
    if match:
        scheme = match.group(1).lower()
        if scheme not in ("http", "https"):
            raise FormatError(f"Invalid index scheme {scheme!r}, must be http or https: {arg}")
        value = value[match.end() :]

    name = value.rstrip("/")
    if not name:
        raise FormatError(f"Invalid index, empty host name: {arg!r}")
    if "/" in name:
        raise FormatError(f"Invalid index name, must not contain a path: {arg}")
    if name != name.lower():
        raise FormatError(f"Invalid index name, must be lowercase: {arg}")

    if name == "index.docker.io":
        name = DEFAULT_INDEX_NAME
    if scheme is None:
        scheme = "http" if _is_localhost(name) else "https"

    return RegistryIndex(
        name=name,
        scheme=scheme,  # type: ignore[arg-type]
        official=name == DEFAULT_INDEX_NAME,
    )


def _resolve_default_index(default_index: str | RegistryIndex | None) -> RegistryIndex:
    if default_index is None:
        return parse_index()
    if isinstance(default_index, RegistryIndex):
        return default_index
    return parse_index(default_index)


def _looks_like_host(segment: str) -> bool:
    return "." in segment or ":" in segment or segment == "localhost"


def _validate_namespace(ns: str) -> None:
    if not 2 <= len(ns) <= 255:
        raise FormatError(f"Invalid repository namespace, must be between 2 and 255 characters: {ns}")
    if not _VALID_NS.match(ns):
        raise FormatError(f"Invalid repository namespace, may only contain [a-z0-9._-]: {ns}")
    if ns.startswith("-") and ns.endswith("-"):
        raise FormatError(f"Invalid repository namespace, cannot start and end with a hyphen: {ns}")
    if "--" in ns:
        raise FormatError(f"Invalid repository namespace, cannot contain consecutive hyphens: {ns}")


def parse_repo(arg: str, default_index: str | RegistryIndex | None = None) -> RegistryRepo:
    """Parse ``[INDEX/]REPO`` into a RegistryRepo.

    The leading segment is taken as the index when it looks like a host
    (contains ``.`` or ``:``, or is ``localhost``) or when the identifier
    starts with a scheme. Otherwise ``default_index`` applies.

    Args:
        arg: Repository identifier.
        default_index: Index used when ``arg`` has no INDEX/ prefix.
            Defaults to the official Docker Hub index.

    Returns:
        The parsed RegistryRepo.

    Raises:
        FormatError: If the identifier or any of its parts is invalid.
    """
    value = arg.strip()
    if not value:
        raise FormatError("Invalid repository name, empty string")

    if "://" in value:
        sep = value.index("://")
        slash = value.find("/", sep + 3)
        if slash == -1:
            raise FormatError(f'Invalid repository name, no "/REPO" after hostname: {arg}')
        index = parse_index(value[:slash])
        remote_raw = value[slash + 1 :]
    else:
        first, _, rest = value.partition("/")
        if rest and _looks_like_host(first):
            index = parse_index(first)
            remote_raw = rest
        else:
            index = _resolve_default_index(default_index)
            remote_raw = value

    if not remote_raw or "//" in remote_raw or remote_raw.endswith("/"):
        raise FormatError(f"Invalid repository name: {arg}")

    ns, sep, name = remote_raw.partition("/")
    if sep:
        _validate_namespace(ns)
    else:
        name = remote_raw
        ns = "library" if index.official else ""

    if not name or not _VALID_REPO.match(name):
        raise FormatError(f"Invalid repository name, may only contain [a-z0-9_/.-]: {name}")

    is_library = index.official and ns == "library"
    remote_name = f"{ns}/{name}" if ns else name
    if index.official:
        local_name = name if is_library else remote_name
        canonical_name = remote_name
    else:
        local_name = f"{index.name}/{remote_name}"
        canonical_name = local_name

    return RegistryRepo(
        index=index,
        official=is_library,
        remote_name=remote_name,
        local_name=local_name,
        canonical_name=canonical_name,
    )


def parse_repo_and_ref(
    arg: str,
    default_index: str | RegistryIndex | None = None,
) -> RegistryImage:
    """Parse ``[INDEX/]REPO[:TAG][@DIGEST]`` into a RegistryImage.

    The digest is everything after the last ``@``. A tag is everything after
    the last ``:`` provided it comes after the last ``/``, so a registry port
    is never mistaken for a tag. Either part defaults to None.

    Args:
        arg: Image identifier.
        default_index: Index used when ``arg`` has no INDEX/ prefix.

    Returns:
        The parsed RegistryImage.

    Raises:
        FormatError: If the repository, tag or digest is malformed.
    """
    value = arg.strip()
    digest: str | None = None
    tag: str | None = None

    at = value.rfind("@")
    if at != -1:
        digest = value[at + 1 :]
        value = value[:at]
        if not _VALID_DIGEST.match(digest):
            raise FormatError(f"Invalid digest, expected algorithm:hex: {digest!r}")

    colon = value.rfind(":")
    if colon != -1 and colon > value.rfind("/"):
        tag = value[colon + 1 :]
        value = value[:colon]
        if not _VALID_TAG.match(tag):
            raise FormatError(f"Invalid tag: {tag!r}")

    repo = parse_repo(value, default_index)
    canonical_ref = repo.canonical_name
    if tag:
        canonical_ref += f":{tag}"
    if digest:
        canonical_ref += f"@{digest}"

    return RegistryImage(
        **repo.model_dump(),
        tag=tag,
        digest=digest,
        canonical_ref=canonical_ref,
    )


def is_digest(reference: str) -> bool:
    """Return True if ``reference`` is a digest rather than a tag."""
    return bool(_VALID_DIGEST.match(reference))


__all__ = [
    "DEFAULT_TAG",
    "is_digest",
    "normalize",
    "parse_index",
    "parse_repo",
    "parse_repo_and_ref",
    "plugin_repository",
]
