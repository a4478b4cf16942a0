"""Unit test fixtures for the registry client.

Unit tests:
- Run without external services (no registries, no network)
- Use an in-memory FakeRegistry in place of the HTTP transport
- Execute quickly (< 1s per test)

Key Fixtures:
- fake_registry: In-memory registry speaking the /v2/ read API with Bearer auth
- make_manifest: Factory for OCI image manifest documents
- sample_digest: Digest of the empty byte string
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit

import pytest

from shard_registry.oci.transport import TransportResponse

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"


def _digest(body: bytes) -> str:
    return f"sha256:{hashlib.sha256(body).hexdigest()}"


def json_response(status: int, document: Any, headers: dict[str, str] | None = None) -> TransportResponse:
    """Build a TransportResponse with a JSON body."""
    return TransportResponse(
        status=status,
        headers={"Content-Type": "application/json", **(headers or {})},
        body=json.dumps(document).encode(),
    )


@dataclass
class RecordedRequest:
    """A request seen by FakeRegistry."""

    method: str
    url: str
    headers: dict[str, str]

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def query(self) -> dict[str, list[str]]:
        return parse_qs(urlsplit(self.url).query)


@dataclass
class FakeRegistry:
    """In-memory registry implementing the Transport protocol.

    Serves ``/v2/<repo>/tags/list`` (Link-header paginated) and
    ``/v2/<repo>/manifests/<ref>`` behind a Bearer challenge, plus the token
    endpoint at ``https://<host>/token``. ``overrides`` maps a URL path to a
    queue of canned responses served before the normal handling.
    """

    host: str = "ghcr.io"
    require_auth: bool = True
    token: str = "token-1"
    expires_in: int | None = 300
    page_size: int = 2
    tags: dict[str, list[str]] = field(default_factory=dict)
    manifests: dict[tuple[str, str], bytes] = field(default_factory=dict)
    overrides: dict[str, list[TransportResponse]] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)
    on_request: Callable[[RecordedRequest], Any] | None = None

    @property
    def token_requests(self) -> list[RecordedRequest]:
        return [r for r in self.requests if r.path == "/token"]

    def requests_to(self, path_fragment: str) -> list[RecordedRequest]:
        return [r for r in self.requests if path_fragment in r.path]

    def push(self, repo: str, tag: str, manifest: dict[str, Any]) -> str:
        """Store a manifest under ``tag`` and return its digest."""
        body = json.dumps(manifest, sort_keys=True).encode()
        digest = _digest(body)
        self.manifests[(repo, tag)] = body
        self.manifests[(repo, digest)] = body
        self.tags.setdefault(repo, [])
        if tag not in self.tags[repo]:
            self.tags[repo].append(tag)
        return digest

    def override(self, path: str, *responses: TransportResponse) -> None:
        self.overrides.setdefault(path, []).extend(responses)

    def challenge(self, repo: str) -> str:
        return (
            f'Bearer realm="https://{self.host}/token",service="{self.host}",'
            f'scope="repository:{repo}:pull"'
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        recorded = RecordedRequest(method, url, dict(headers or {}))
        self.requests.append(recorded)
        if self.on_request is not None:
            result = self.on_request(recorded)
            if hasattr(result, "__await__"):
                await result

        queued = self.overrides.get(recorded.path)
        if queued:
            return queued.pop(0)

        if recorded.path == "/token":
            document: dict[str, Any] = {"token": self.token}
            if self.expires_in is not None:
                document["expires_in"] = self.expires_in
            return json_response(200, document)

        match = re.match(r"^/v2/(?P<repo>.+)/(?P<kind>tags/list|manifests/(?P<ref>[^/]+))$", recorded.path)
        if match is None:
            return json_response(404, {"errors": [{"code": "NAME_UNKNOWN", "message": "unknown path"}]})
        repo = match.group("repo")

        if self.require_auth and recorded.headers.get("Authorization") != f"Bearer {self.token}":
            return json_response(
                401,
                {"errors": [{"code": "UNAUTHORIZED", "message": "authentication required"}]},
                {"WWW-Authenticate": self.challenge(repo)},
            )

        if match.group("kind") == "tags/list":
            return self._tags_page(repo, recorded)
        return self._manifest(repo, match.group("ref"))

    def _tags_page(self, repo: str, recorded: RecordedRequest) -> TransportResponse:
        if repo not in self.tags:
            return json_response(404, {"errors": [{"code": "NAME_UNKNOWN", "message": "repository name not known"}]})
        tags = self.tags[repo]
        query = recorded.query
        size = int(query["n"][0]) if "n" in query else self.page_size
        start = 0
        if "last" in query:
            start = tags.index(query["last"][0]) + 1
        page = tags[start : start + size]
        headers: dict[str, str] = {}
        if start + size < len(tags):
            next_query = urlencode({"n": size, "last": page[-1]})
            headers["Link"] = f'</v2/{repo}/tags/list?{next_query}>; rel="next"'
        return json_response(200, {"name": repo, "tags": page}, headers)

    def _manifest(self, repo: str, ref: str) -> TransportResponse:
        body = self.manifests.get((repo, ref))
        if body is None:
            return json_response(404, {"errors": [{"code": "MANIFEST_UNKNOWN", "message": "manifest unknown"}]})
        return TransportResponse(
            status=200,
            headers={"Content-Type": OCI_MANIFEST, "Docker-Content-Digest": _digest(body)},
            body=body,
        )


@pytest.fixture
def sample_digest() -> str:
    """Return a valid SHA256 digest for testing.

    Returns:
        The sha256 digest of the empty byte string.
    """
    return "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


@pytest.fixture
def fake_registry() -> FakeRegistry:
    """Create an empty in-memory registry for ghcr.io."""
    return FakeRegistry()


@pytest.fixture
def make_manifest() -> Callable[..., dict[str, Any]]:
    """Factory for OCI image manifest documents.

    Usage:
        def test_x(make_manifest):
            manifest = make_manifest(layer_sizes=[10, 20], annotations={"k": "v"})
    """

    def _make(
        *,
        layer_sizes: list[int] | None = None,
        annotations: dict[str, str] | None = None,
        created: str | None = None,
        config_size: int = 2,
    ) -> dict[str, Any]:
        layers = [
            {
                "mediaType": "application/octet-stream",
                "size": size,
                "digest": _digest(str(i).encode() * (size or 1)),
            }
            for i, size in enumerate(layer_sizes if layer_sizes is not None else [100])
        ]
        document: dict[str, Any] = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST,
            "config": {
                "mediaType": "application/vnd.oci.image.config.v1+json",
                "size": config_size,
                "digest": _digest(b"{}"),
            },
            "layers": layers,
        }
        if annotations is not None:
            document["annotations"] = annotations
        if created is not None:
            document["created"] = created
        return document

    return _make


@pytest.fixture
def respond() -> Callable[..., TransportResponse]:
    """Return the json_response helper."""
    return json_response
