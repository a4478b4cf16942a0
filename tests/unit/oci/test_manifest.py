"""Unit tests for manifest digest, classification and metadata helpers."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest
from structlog.testing import capture_logs

from shard_registry.errors import DigestMismatchError, ProtocolError, UnsupportedManifestError
from shard_registry.oci.manifest import (
    MEDIATYPE_DOCKER_MANIFEST_LIST_V2,
    MEDIATYPE_DOCKER_MANIFEST_V2,
    MEDIATYPE_OCI_INDEX_V1,
    MEDIATYPE_OCI_MANIFEST_V1,
    calculate_digest,
    calculate_layers_total_size,
    parse_created_timestamp,
    parse_manifest,
    verify_digest,
)
from shard_registry.schemas.registry import ImageManifest, ManifestIndex

INDEX_DOCUMENT: dict[str, Any] = {
    "schemaVersion": 2,
    "manifests": [
        {
            "mediaType": MEDIATYPE_OCI_MANIFEST_V1,
            "size": 512,
            "digest": "sha256:" + "a" * 64,
            "platform": {"os": "linux", "architecture": "amd64"},
        }
    ],
}


def _encode(document: dict[str, Any]) -> bytes:
    return json.dumps(document).encode()


class TestDigest:
    """Tests for digest calculation and verification."""

    @pytest.mark.requirement("manifest-digest")
    def test_empty_content(self, sample_digest: str) -> None:
        """Test the digest of empty content is the well-known empty sha256."""
        assert calculate_digest(b"") == sample_digest

    @pytest.mark.requirement("manifest-digest")
    def test_digest_is_over_raw_bytes(self) -> None:
        """Test semantically equal JSON with different bytes digests differently."""
        assert calculate_digest(b'{"a":1}') != calculate_digest(b'{"a": 1}')

    @pytest.mark.requirement("manifest-digest")
    def test_verify_digest(self, sample_digest: str) -> None:
        """Test a missing advertised digest passes and a different one fails."""
        verify_digest(sample_digest, None)
        verify_digest(sample_digest, sample_digest)
        with pytest.raises(DigestMismatchError) as exc_info:
            verify_digest(sample_digest, "sha256:" + "0" * 64, reference="ghcr.io/o/r:1.0.0")
        assert exc_info.value.actual == sample_digest

    @pytest.mark.requirement("manifest-digest")
    def test_verify_digest_is_case_sensitive(self, sample_digest: str) -> None:
        """Test digests are compared byte for byte."""
        with pytest.raises(DigestMismatchError):
            verify_digest(sample_digest, sample_digest.upper())


class TestParseManifest:
    """Tests for manifest decoding and classification."""

    @pytest.mark.requirement("manifest-classify")
    def test_image_manifest(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test an OCI image manifest decodes to ImageManifest."""
        manifest, media_type = parse_manifest(_encode(make_manifest(layer_sizes=[10, 20])))

        assert isinstance(manifest, ImageManifest)
        assert not manifest.is_index
        assert media_type == MEDIATYPE_OCI_MANIFEST_V1
        assert [layer.size for layer in manifest.layers] == [10, 20]

    @pytest.mark.requirement("manifest-classify")
    @pytest.mark.parametrize("media_type", [MEDIATYPE_OCI_INDEX_V1, MEDIATYPE_DOCKER_MANIFEST_LIST_V2])
    def test_index_from_content_type(self, media_type: str) -> None:
        """Test an index is recognised from the Content-Type header."""
        manifest, parsed_type = parse_manifest(_encode(INDEX_DOCUMENT), f"{media_type}; charset=utf-8")

        assert isinstance(manifest, ManifestIndex)
        assert manifest.is_index
        assert parsed_type == media_type
        assert manifest.manifests[0].platform == {"os": "linux", "architecture": "amd64"}

    @pytest.mark.requirement("manifest-classify")
    def test_body_media_type_wins_over_header(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test the body's mediaType takes precedence over Content-Type."""
        document = make_manifest()
        document["mediaType"] = MEDIATYPE_DOCKER_MANIFEST_V2

        _, media_type = parse_manifest(_encode(document), MEDIATYPE_OCI_INDEX_V1)

        assert media_type == MEDIATYPE_DOCKER_MANIFEST_V2

    @pytest.mark.requirement("manifest-classify")
    def test_shape_decides_for_generic_json(self) -> None:
        """Test a manifests array means index when no media type is given."""
        manifest, media_type = parse_manifest(_encode(INDEX_DOCUMENT), "application/json")

        assert isinstance(manifest, ManifestIndex)
        assert media_type == MEDIATYPE_OCI_INDEX_V1

    @pytest.mark.requirement("manifest-classify")
    def test_schema_version_1_is_unsupported(self) -> None:
        """Test legacy schema 1 manifests are rejected."""
        body = _encode({"schemaVersion": 1, "name": "library/busybox", "fsLayers": []})

        with pytest.raises(UnsupportedManifestError) as exc_info:
            parse_manifest(body, "application/vnd.docker.distribution.manifest.v1+prettyjws")

        assert exc_info.value.schema_version == 1

    @pytest.mark.requirement("manifest-classify")
    def test_unknown_media_type_is_unsupported(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test a media type that is neither manifest nor index is rejected."""
        document = make_manifest()
        document["mediaType"] = "application/vnd.example.thing+json"

        with pytest.raises(UnsupportedManifestError) as exc_info:
            parse_manifest(_encode(document))

        assert exc_info.value.media_type == "application/vnd.example.thing+json"

    @pytest.mark.requirement("manifest-classify")
    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"schemaVersion": 2}'])
    def test_malformed_bodies_are_protocol_errors(self, body: bytes) -> None:
        """Test non-JSON, non-object and shapeless bodies raise ProtocolError."""
        with pytest.raises(ProtocolError):
            parse_manifest(body)

    @pytest.mark.requirement("manifest-classify")
    def test_invalid_descriptor_is_protocol_error(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test a layer with a negative size fails validation."""
        document = make_manifest()
        document["layers"][0]["size"] = -1

        with pytest.raises(ProtocolError):
            parse_manifest(_encode(document))

    @pytest.mark.requirement("manifest-classify")
    def test_unknown_fields_are_ignored(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test extra top-level keys do not fail parsing."""
        document = make_manifest()
        document["subject"] = {"whatever": True}

        manifest, _ = parse_manifest(_encode(document))

        assert isinstance(manifest, ImageManifest)


class TestLayersTotalSize:
    """Tests for artifact size calculation."""

    @pytest.mark.requirement("manifest-size")
    def test_sums_layers_and_skips_config(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test size is the sum of layers without the config blob."""
        manifest, _ = parse_manifest(_encode(make_manifest(layer_sizes=[100, 250, 0], config_size=9999)))
        assert calculate_layers_total_size(manifest) == 350

    @pytest.mark.requirement("manifest-size")
    def test_no_layers(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test a manifest without layers has size 0."""
        manifest, _ = parse_manifest(_encode(make_manifest(layer_sizes=[])))
        assert calculate_layers_total_size(manifest) == 0

    @pytest.mark.requirement("manifest-size")
    def test_index_has_size_zero(self) -> None:
        """Test an index reports 0."""
        manifest, _ = parse_manifest(_encode(INDEX_DOCUMENT))
        assert calculate_layers_total_size(manifest) == 0


class TestCreatedTimestamp:
    """Tests for publication timestamp extraction."""

    @pytest.mark.requirement("manifest-published-at")
    def test_created_field_wins(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test the top-level created field takes precedence over annotations."""
        manifest = ImageManifest.model_validate(
            make_manifest(
                created="2024-01-15T10:30:00Z",
                annotations={
                    "vnd.obsidianmd.plugin.published-at": "2023-01-01T00:00:00Z",
                    "org.opencontainers.image.created": "2022-01-01T00:00:00Z",
                },
            )
        )
        assert parse_created_timestamp(manifest) == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    @pytest.mark.requirement("manifest-published-at")
    def test_plugin_annotation_before_image_created(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test the plugin annotation is preferred over the OCI created annotation."""
        manifest = ImageManifest.model_validate(
            make_manifest(
                annotations={
                    "vnd.obsidianmd.plugin.published-at": "2023-06-01T12:00:00+02:00",
                    "org.opencontainers.image.created": "2022-01-01T00:00:00Z",
                }
            )
        )
        published = parse_created_timestamp(manifest)
        assert published == datetime(2023, 6, 1, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.requirement("manifest-published-at")
    def test_unparsable_candidate_is_skipped(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test a bad candidate is logged and the next one is used."""
        manifest = ImageManifest.model_validate(
            make_manifest(
                created="yesterday",
                annotations={"org.opencontainers.image.created": "2022-01-01T00:00:00"},
            )
        )

        with capture_logs() as logs:
            published = parse_created_timestamp(manifest)

        assert published == datetime(2022, 1, 1, tzinfo=timezone.utc)
        assert logs[0]["event"] == "manifest_timestamp_unparsable"
        assert logs[0]["log_level"] == "warning"

    @pytest.mark.requirement("manifest-published-at")
    def test_no_timestamp(self, make_manifest: Callable[..., dict[str, Any]]) -> None:
        """Test None is returned when nothing parses."""
        manifest = ImageManifest.model_validate(make_manifest())
        assert parse_created_timestamp(manifest) is None

    @pytest.mark.requirement("manifest-published-at")
    @pytest.mark.parametrize(
        ("value", "microsecond"),
        [
            ("2024-01-15T10:30:00.123456789Z", 123456),
            ("2024-01-15T10:30:00.1Z", 100000),
            ("2024-01-15T10:30:00.12345+00:00", 123450),
        ],
    )
    def test_any_fraction_length(
        self, make_manifest: Callable[..., dict[str, Any]], value: str, microsecond: int
    ) -> None:
        """Test RFC 3339 fractions of any length parse, truncated to microseconds."""
        manifest = ImageManifest.model_validate(
            make_manifest(annotations={"org.opencontainers.image.created": value})
        )
        assert parse_created_timestamp(manifest) == datetime(
            2024, 1, 15, 10, 30, 0, microsecond, tzinfo=timezone.utc
        )
