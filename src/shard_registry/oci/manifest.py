"""Manifest digest, classification and metadata helpers.

Functions here are pure: they operate on bytes and parsed documents and never
touch the network. ManifestClient composes them after each fetch.

Key Components:
    calculate_digest: SHA-256 content digest in OCI format
    verify_digest: Compare a computed digest with an advertised one
    parse_manifest: Decode and classify manifest bytes
    calculate_layers_total_size: Artifact size as the sum of layer sizes
    parse_created_timestamp: Publication timestamp from a manifest

Media Types:
    application/vnd.oci.image.manifest.v1+json
    application/vnd.oci.image.index.v1+json
    application/vnd.docker.distribution.manifest.v2+json
    application/vnd.docker.distribution.manifest.list.v2+json
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Any, Union

import structlog
from pydantic import ValidationError

from shard_registry.errors import DigestMismatchError, ProtocolError, UnsupportedManifestError
from shard_registry.schemas.registry import ImageManifest, ManifestIndex

logger = structlog.get_logger(__name__)

MEDIATYPE_OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
MEDIATYPE_OCI_INDEX_V1 = "application/vnd.oci.image.index.v1+json"
MEDIATYPE_DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIATYPE_DOCKER_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"

MANIFEST_MEDIA_TYPES = frozenset({MEDIATYPE_OCI_MANIFEST_V1, MEDIATYPE_DOCKER_MANIFEST_V2})
INDEX_MEDIA_TYPES = frozenset({MEDIATYPE_OCI_INDEX_V1, MEDIATYPE_DOCKER_MANIFEST_LIST_V2})

MANIFEST_ACCEPT = ", ".join(
    (
        MEDIATYPE_OCI_MANIFEST_V1,
        MEDIATYPE_DOCKER_MANIFEST_V2,
        MEDIATYPE_OCI_INDEX_V1,
        MEDIATYPE_DOCKER_MANIFEST_LIST_V2,
    )
)
"""Accept header sent with every manifest request."""

_GENERIC_JSON_TYPES = frozenset({"", "application/json", "text/plain", "application/octet-stream"})

# RFC 3339 allows any number of fraction digits; fromisoformat takes 3 or 6 on 3.10
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")

ANNOTATION_PUBLISHED_AT = "vnd.obsidianmd.plugin.published-at"
ANNOTATION_IMAGE_CREATED = "org.opencontainers.image.created"

Manifest = Union[ImageManifest, ManifestIndex]


def calculate_digest(content: bytes) -> str:
    """Calculate SHA256 digest for content.

    Args:
        content: Raw bytes to calculate digest for.

    Returns:
        Digest string in OCI format: "sha256:<hex>"

    Example:
        >>> calculate_digest(b"")
        'sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    hash_value = hashlib.sha256(content).hexdigest()
    return f"sha256:{hash_value}"


def verify_digest(actual: str, expected: str | None, *, reference: str | None = None) -> None:
    """Compare a computed digest with an advertised one, byte for byte.

    Raises:
        DigestMismatchError: If ``expected`` is set and differs from ``actual``.
    """
    if expected is not None and expected != actual:
        raise DigestMismatchError(expected, actual, reference=reference)


def _strip_params(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def classify_media_type(document: dict[str, Any], content_type: str | None = None) -> str:
    """Return the media type a manifest document should be decoded as.

    The body's ``mediaType`` wins over the ``Content-Type`` header. Without
    either, the shape of the document decides (``manifests`` means an index).

    Raises:
        UnsupportedManifestError: For schema version 1, any schema version
            other than 2, or a media type that is neither manifest nor index.
        ProtocolError: If the shape is ambiguous.
    """
    schema_version = document.get("schemaVersion")
    if schema_version == 1:
        raise UnsupportedManifestError(
            "schema version 1 manifests are not supported",
            schema_version=1,
        )
    if schema_version != 2:
        raise UnsupportedManifestError(
            f"unknown schema version {schema_version!r}",
            schema_version=schema_version if isinstance(schema_version, int) else None,
        )

    body_type = document.get("mediaType")
    media_type = body_type.strip() if isinstance(body_type, str) else _strip_params(content_type)
    if media_type in MANIFEST_MEDIA_TYPES or media_type in INDEX_MEDIA_TYPES:
        return media_type
    if media_type not in _GENERIC_JSON_TYPES:
        raise UnsupportedManifestError(f"unknown media type {media_type!r}", media_type=media_type)

    if "manifests" in document:
        return MEDIATYPE_OCI_INDEX_V1
    if "layers" in document or "config" in document:
        return MEDIATYPE_OCI_MANIFEST_V1
    raise ProtocolError("Manifest has no media type and neither layers nor manifests")


def parse_manifest(body: bytes, content_type: str | None = None) -> tuple[Manifest, str]:
    """Decode manifest bytes into a typed manifest.

    Args:
        body: Raw manifest bytes as received.
        content_type: ``Content-Type`` response header, if any.

    Returns:
        Tuple of (manifest, media_type).

    Raises:
        ProtocolError: If the body is not a JSON object or fails validation.
        UnsupportedManifestError: See classify_media_type.
    """
    try:
        document = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Manifest is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ProtocolError("Manifest is not a JSON object")

    media_type = classify_media_type(document, content_type)
    model: type[ImageManifest] | type[ManifestIndex]
    model = ManifestIndex if media_type in INDEX_MEDIA_TYPES else ImageManifest
    try:
        manifest = model.model_validate(document)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {media_type} manifest: {e}") from e
    return manifest, media_type


def calculate_layers_total_size(manifest: Manifest) -> int:
    """Return the artifact size as the sum of every layer size.

    The config blob is never counted. Indexes have no layers and report 0.
    """
    if isinstance(manifest, ManifestIndex):
        return 0
    return sum(layer.size for layer in manifest.layers)


def _parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_created_timestamp(manifest: Manifest) -> datetime | None:
    """Extract the publication timestamp of a manifest.

    Candidates in order: the top-level ``created`` field, the
    ``vnd.obsidianmd.plugin.published-at`` annotation and the
    ``org.opencontainers.image.created`` annotation. Unparsable candidates
    are skipped.

    Returns:
        Timezone-aware timestamp, or None when no candidate parses.
    """
    annotations = manifest.annotations or {}
    candidates = [
        ("created", getattr(manifest, "created", None)),
        (ANNOTATION_PUBLISHED_AT, annotations.get(ANNOTATION_PUBLISHED_AT)),
        (ANNOTATION_IMAGE_CREATED, annotations.get(ANNOTATION_IMAGE_CREATED)),
    ]
    for source, value in candidates:
        if not value:
            continue
        try:
            return _parse_timestamp(value)
        except ValueError:
            logger.warning("manifest_timestamp_unparsable", source=source, value=value)
    return None


__all__ = [
    "ANNOTATION_IMAGE_CREATED",
    "ANNOTATION_PUBLISHED_AT",
    "INDEX_MEDIA_TYPES",
    "MANIFEST_ACCEPT",
    "MANIFEST_MEDIA_TYPES",
    "MEDIATYPE_DOCKER_MANIFEST_LIST_V2",
    "MEDIATYPE_DOCKER_MANIFEST_V2",
    "MEDIATYPE_OCI_INDEX_V1",
    "MEDIATYPE_OCI_MANIFEST_V1",
    "Manifest",
    "calculate_digest",
    "calculate_layers_total_size",
    "classify_media_type",
    "parse_created_timestamp",
    "parse_manifest",
    "verify_digest",
]
