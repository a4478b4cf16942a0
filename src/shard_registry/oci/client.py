"""Registry client for listing tags and fetching verified manifests.

ManifestClient speaks the read side of the OCI Distribution API:

    GET /v2/<name>/tags/list?n=&last=     Tag listing, Link-header paginated
    GET /v2/<name>/manifests/<reference>  Manifest by tag or digest

Every request runs through one request chain: attach the cached credential
for the repository's pull scope, send, and on 401 negotiate from the
``WWW-Authenticate`` challenge and retry exactly once. A second 401 is an
AuthError. Every public call takes a ``timeout`` deadline in seconds; an
overrun raises RegistryTimeoutError. Cancelling the calling task aborts the
in-flight request.

Key Components:
    ManifestClient: list_tags, get_manifest, query_tag_metadata, fetch_versions
    ManifestResult: Typed manifest plus its verified digest and headers
    VersionFetchResult: Outcome of fetch_versions

Example:
    >>> async with HttpxTransport() as transport:
    ...     client = ManifestClient(transport, credentials=Credentials.from_token(token))
    ...     result = await client.fetch_versions("ghcr.io/owner/repo")
    ...     for version in result.versions:
    ...         print(version.tag, version.sha)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar
from urllib.parse import quote, urlencode

import httpx
import structlog

from shard_registry.errors import AuthError, RegistryTimeoutError, error_from_response
from shard_registry.oci.auth import AuthInfo, AuthNegotiator, Credentials
from shard_registry.oci.batch_fetcher import BatchFetcher
from shard_registry.oci.manifest import (
    MANIFEST_ACCEPT,
    Manifest,
    calculate_digest,
    calculate_layers_total_size,
    parse_created_timestamp,
    parse_manifest,
    verify_digest,
)
from shard_registry.oci.metrics import RegistryMetrics
from shard_registry.oci.namespace import DEFAULT_TAG, is_digest, parse_repo, parse_repo_and_ref
from shard_registry.oci.pagination import TagPager
from shard_registry.oci.resilience import RetryPolicy
from shard_registry.schemas.config import RegistryClientConfig
from shard_registry.schemas.registry import RawVersion, RegistryImage, RegistryRepo, TagMetadata

if TYPE_CHECKING:
    from shard_registry.oci.transport import Transport, TransportResponse

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DIGEST_HEADER = "Docker-Content-Digest"


@dataclass(frozen=True)
class ManifestResult:
    """A fetched and verified manifest.

    Attributes:
        manifest: ImageManifest or ManifestIndex.
        digest: SHA-256 digest computed over the raw body.
        media_type: Media type the body was decoded as.
        headers: Response headers.
        size: Length of the raw body in bytes.
    """

    manifest: Manifest
    digest: str
    media_type: str
    headers: httpx.Headers
    size: int

    @property
    def is_index(self) -> bool:
        return self.manifest.is_index


@dataclass
class VersionFetchResult:
    """Outcome of ``ManifestClient.fetch_versions``.

    Attributes:
        repository: Canonical name of the repository.
        versions: One RawVersion per tag that resolved, in tag-list order.
        errors: Per-tag failures.
    """

    repository: str
    versions: list[RawVersion] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)


class ManifestClient:
    """Read-only OCI registry client.

    The client owns one AuthNegotiator (and therefore one token cache). It
    never opens connections itself; all I/O goes through the injected
    transport.

    Example:
        >>> client = ManifestClient(transport, config=RegistryClientConfig(default_index="ghcr.io"))
        >>> tags = await client.list_tags("owner/repo").collect()
    """

    def __init__(
        self,
        transport: Transport,
        *,
        credentials: Credentials | None = None,
        auth: AuthNegotiator | None = None,
        config: RegistryClientConfig | None = None,
        metrics: RegistryMetrics | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize ManifestClient.

        Args:
            transport: Injected transport performing the HTTP calls.
            credentials: Credentials for a negotiator created here. Ignored
                when ``auth`` is given.
            auth: Existing negotiator to share (and its token cache).
            config: Client defaults. Uses RegistryClientConfig() if None.
            metrics: Metrics collector. A default one is created if None.
            retry_policy: Policy used by fetch_versions. Built from
                ``config.retry`` if None.
        """
        self._transport = transport
        self._config = config or RegistryClientConfig()
        self._metrics = metrics or RegistryMetrics()
        self._auth = auth or AuthNegotiator(
            transport,
            credentials,
            default_ttl=self._config.token_ttl_seconds,
            metrics=self._metrics,
        )
        self._retry_policy = retry_policy or RetryPolicy(self._config.retry)

    @property
    def config(self) -> RegistryClientConfig:
        return self._config

    @property
    def auth(self) -> AuthNegotiator:
        return self._auth

    # ------------------------------------------------------------------
    # Request chain
    # ------------------------------------------------------------------

    def _repo(self, repo: RegistryRepo | str) -> RegistryRepo:
        if isinstance(repo, RegistryRepo):
            return repo
        return parse_repo(repo, self._config.default_index)

    def _deadline(self, timeout: float | None) -> float | None:
        return self._config.timeout_seconds if timeout is None else timeout

    async def _with_deadline(self, awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            raise RegistryTimeoutError(operation, timeout) from e

    async def _request(
        self,
        repo: RegistryRepo,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        context: str,
    ) -> TransportResponse:
        """Send an authenticated GET and return the 2xx response.

        Raises:
            AuthError: If the registry rejects the renegotiated credential.
            RegistryError: The kind matching any other non-2xx status.
        """
        host = repo.index.name
        scope = repo.pull_scope
        auth: AuthInfo = self._auth.authorization_for(host, scope)
        base_headers = dict(headers or {})

        response = await self._transport.request("GET", url, headers={**base_headers, **auth.headers()})
        if response.status == 401:
            logger.debug("registry_auth_challenge", registry=host, scope=scope, url=url)
            auth = await self._auth.negotiate(
                host,
                scope,
                response.headers.get("WWW-Authenticate"),
                rejected=auth,
            )
            response = await self._transport.request(
                "GET", url, headers={**base_headers, **auth.headers()}
            )
            if response.status == 401:
                self._auth.invalidate(host, scope)
                raise AuthError(host, f"credentials rejected after re-authentication while trying to {context}")

        if not response.ok:
            raise error_from_response(response, registry=host, context=context)
        return response

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def list_tags(
        self,
        repo: RegistryRepo | str,
        *,
        page_size: int | None = None,
        page_limit: int | None = None,
        last: str | None = None,
        timeout: float | None = None,
    ) -> TagPager:
        """Return a lazy pager over the repository's tags.

        No request is made until the pager is iterated.

        Args:
            repo: Repository, parsed or as a string.
            page_size: Tags per page (``n``). Defaults to ``config.page_size``.
            page_limit: Maximum pages per iteration. Defaults to ``config.page_limit``.
            last: Start the listing after this tag.
            timeout: Deadline in seconds for each page request.
                Defaults to ``config.timeout_seconds``.

        Returns:
            TagPager yielding tag strings.
        """
        parsed = self._repo(repo)
        size = page_size if page_size is not None else self._config.page_size
        query: dict[str, str] = {}
        if size is not None:
            query["n"] = str(size)
        if last is not None:
            query["last"] = last
        first_url = f"{parsed.index.url}/v2/{parsed.remote_name}/tags/list"
        if query:
            first_url = f"{first_url}?{urlencode(query)}"
        deadline = self._deadline(timeout)
        registry = parsed.index.name

        async def fetch_page(url: str) -> TransportResponse:
            with self._metrics.create_span(
                RegistryMetrics.SPAN_LIST_TAGS,
                {"registry": registry, "repository": parsed.remote_name, "url": url},
            ), self._metrics.operation_timer("list_tags", registry):
                return await self._with_deadline(
                    self._request(parsed, url, context=f"list tags for {parsed.canonical_name}"),
                    deadline,
                    f"list tags for {parsed.canonical_name}",
                )

        return TagPager(
            fetch_page,
            first_url,
            repository=parsed.canonical_name,
            page_limit=page_limit if page_limit is not None else self._config.page_limit,
        )

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    async def get_manifest(
        self,
        repo: RegistryRepo | str,
        reference: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ManifestResult:
        """Fetch a manifest and verify its content digest.

        Args:
            repo: Repository or image. A string may carry ``:tag``/``@digest``.
            reference: Tag or digest. Defaults to the image's digest, then its
                tag, then ``latest``.
            timeout: Deadline in seconds. Defaults to ``config.timeout_seconds``.

        Returns:
            ManifestResult with the typed manifest and its verified digest.

        Raises:
            DigestMismatchError: If the body does not hash to the
                ``Docker-Content-Digest`` header or to a digest reference.
            UnsupportedManifestError: For schema 1 or unknown media types.
            ProtocolError: If the body is not a valid manifest.
        """
        image = parse_repo_and_ref(repo, self._config.default_index) if isinstance(repo, str) else repo
        ref = reference or (image.reference if isinstance(image, RegistryImage) else None) or DEFAULT_TAG
        operation = f"get manifest {image.canonical_name}:{ref}"
        return await self._with_deadline(
            self._get_manifest(image, ref, operation),
            self._deadline(timeout),
            operation,
        )

    async def _get_manifest(self, repo: RegistryRepo, ref: str, operation: str) -> ManifestResult:
        registry = repo.index.name
        url = f"{repo.index.url}/v2/{repo.remote_name}/manifests/{quote(ref, safe=':')}"
        with self._metrics.create_span(
            RegistryMetrics.SPAN_GET_MANIFEST,
            {"registry": registry, "repository": repo.remote_name, "reference": ref},
        ) as span, self._metrics.operation_timer("get_manifest", registry):
            response = await self._request(repo, url, headers={"Accept": MANIFEST_ACCEPT}, context=operation)

            digest = calculate_digest(response.body)
            target = f"{repo.canonical_name}:{ref}"
            verify_digest(digest, response.headers.get(DIGEST_HEADER), reference=target)
            if is_digest(ref):
                verify_digest(digest, ref, reference=target)

            manifest, media_type = parse_manifest(response.body, response.headers.get("Content-Type"))
            span.set_attribute("manifest.digest", digest)
            span.set_attribute("manifest.media_type", media_type)

        logger.debug(
            "manifest_fetched",
            repository=repo.canonical_name,
            reference=ref,
            digest=digest,
            media_type=media_type,
        )
        return ManifestResult(
            manifest=manifest,
            digest=digest,
            media_type=media_type,
            headers=response.headers,
            size=len(response.body),
        )

    async def query_tag_metadata(
        self,
        repo: RegistryRepo | str,
        tag: str,
        *,
        timeout: float | None = None,
    ) -> TagMetadata:
        """Fetch a tag's manifest and extract digest, size, date and annotations.

        Args:
            repo: Repository, parsed or as a string.
            tag: Tag to resolve.
            timeout: Deadline in seconds. Defaults to ``config.timeout_seconds``.

        Returns:
            TagMetadata; size is the sum of all layer sizes.
        """
        parsed = self._repo(repo)
        with self._metrics.create_span(
            RegistryMetrics.SPAN_QUERY_TAG_METADATA,
            {"registry": parsed.index.name, "repository": parsed.remote_name, "tag": tag},
        ):
            result = await self.get_manifest(parsed, tag, timeout=timeout)

        manifest = result.manifest
        return TagMetadata(
            digest=result.digest,
            published_at=parse_created_timestamp(manifest),
            size=calculate_layers_total_size(manifest),
            annotations=dict(manifest.annotations or {}),
        )

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    async def fetch_versions(
        self,
        repo: RegistryRepo | str,
        *,
        max_concurrency: int | None = None,
        page_limit: int | None = None,
        timeout: float | None = None,
    ) -> VersionFetchResult:
        """List every tag and fetch its metadata concurrently.

        Transient failures of each request are retried with backoff. A tag
        whose metadata cannot be fetched is reported in ``errors`` without
        affecting the others; a failed tag listing propagates.

        Args:
            repo: Repository, parsed or as a string.
            max_concurrency: In-flight manifest requests. Defaults to
                ``config.max_concurrency``.
            page_limit: Maximum tag pages. Defaults to ``config.page_limit``.
            timeout: Deadline in seconds for each request.

        Returns:
            VersionFetchResult with versions in tag-list order.
        """
        parsed = self._repo(repo)
        pager = self.list_tags(parsed, page_limit=page_limit, timeout=timeout)
        tags = await self._retry_policy.call(pager.collect)
        self._metrics.record_tags_listed(parsed.index.name, len(tags))

        fetcher = BatchFetcher(max_concurrency or self._config.max_concurrency)
        batch = await fetcher.fetch(
            tags,
            lambda tag: self._retry_policy.call(self.query_tag_metadata, parsed, tag, timeout=timeout),
        )

        result = VersionFetchResult(repository=parsed.canonical_name, errors=dict(batch.errors))
        result.versions = [RawVersion.from_metadata(tag, metadata) for tag, metadata in batch.ordered(tags)]
        logger.info(
            "versions_fetched",
            repository=parsed.canonical_name,
            tags=len(tags),
            versions=len(result.versions),
            failed=len(result.errors),
        )
        return result


__all__ = [
    "DIGEST_HEADER",
    "ManifestClient",
    "ManifestResult",
    "VersionFetchResult",
]
