"""Link-header pagination for tag listings.

Registries paginate ``GET /v2/<name>/tags/list`` with an RFC 5988 style
``Link: </v2/<name>/tags/list?n=100&last=x>; rel="next"`` header. TagPager
walks those pages lazily: nothing is fetched until iteration starts, each
page is requested only when the previous one has been consumed, and the
caller can stop at any time.

Example:
    >>> pager = client.list_tags("ghcr.io/owner/repo", page_limit=5)
    >>> async for tag in pager:
    ...     if tag == "1.0.0":
    ...         pager.stop()
    >>> tags = await pager.collect()  # restarts from the first page
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from urllib.parse import urljoin

import structlog

from shard_registry.errors import ProtocolError
from shard_registry.oci.transport import TransportResponse

logger = structlog.get_logger(__name__)

MAX_LINKS = 5
"""Maximum number of comma-separated links considered in one header."""

_LINK = re.compile(r"^<([^>]+)>(?:\s*;\s*(.+))?$")


@dataclass(frozen=True)
class Link:
    """One entry of a Link header."""

    url: str
    rel: str
    params: dict[str, str] = field(default_factory=dict)


def parse_link_header(header: str | None) -> list[Link]:
    """Parse a Link header into its entries.

    Args:
        header: Raw header value, or None.

    Returns:
        Parsed links (empty for a missing or blank header).

    Raises:
        ProtocolError: If a non-blank header contains no parsable entry.
    """
    if header is None or not header.strip():
        return []

    links: list[Link] = []
    for piece in header.split(",")[:MAX_LINKS]:
        match = _LINK.match(piece.strip())
        if match is None:
            continue
        params: dict[str, str] = {}
        for param in (match.group(2) or "").split(";"):
            key, sep, value = param.strip().partition("=")
            if not sep or not value:
                continue
            value = value.strip()
            if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            params[key.strip().lower()] = value
        rel = params.pop("rel", None)
        if rel:
            links.append(Link(url=match.group(1), rel=rel, params=params))

    if not links:
        raise ProtocolError(f"Unparsable Link header: {header!r}")
    return links


def next_page_url(header: str | None, current_url: str) -> str | None:
    """Return the absolute URL of the next page, or None on the last page.

    Raises:
        ProtocolError: If the header is unparsable.
    """
    for link in parse_link_header(header):
        if "next" in link.rel.split():
            return urljoin(current_url, link.url)
    return None


@dataclass(frozen=True)
class TagPage:
    """One page of a tag listing.

    Attributes:
        number: 1-based page number.
        tags: Tags on this page.
        url: URL the page was fetched from.
        next_url: URL of the following page, None on the last page.
    """

    number: int
    tags: list[str]
    url: str
    next_url: str | None


PageFetcher = Callable[[str], Awaitable[TransportResponse]]


def _decode_tags(response: TransportResponse, gathered: list[str]) -> list[str]:
    try:
        document = response.json()
    except ProtocolError as e:
        raise ProtocolError(str(e), partial_tags=gathered) from e
    if not isinstance(document, dict):
        raise ProtocolError("Tag list response is not a JSON object", partial_tags=gathered)

    tags = document.get("tags")
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ProtocolError("Tag list response has a malformed 'tags' field", partial_tags=gathered)
    return tags


class TagPager:
    """Lazy, restartable iterator over the tags of a repository.

    Iterating yields tags one by one; ``pages()`` yields whole pages. Every
    new iteration starts again from the first page. ``stop()`` ends the
    current iteration before the next page is requested.

    Attributes:
        repository: Repository being listed, for logs and errors.
        page_limit: Maximum number of pages per iteration (None for all).
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        first_url: str,
        *,
        repository: str,
        page_limit: int | None = None,
    ) -> None:
        """Initialize TagPager.

        Args:
            fetch_page: Coroutine performing the authenticated GET of a page
                URL and returning the 2xx response.
            first_url: URL of the first page.
            repository: Repository name, for logs and errors.
            page_limit: Maximum number of pages to fetch per iteration.
        """
        if page_limit is not None and page_limit < 1:
            raise ValueError("page_limit must be at least 1")
        self._fetch_page = fetch_page
        self._first_url = first_url
        self.repository = repository
        self.page_limit = page_limit
        self._stopped = False
        self._pages_fetched = 0

    @property
    def stopped(self) -> bool:
        """Return True if ``stop()`` ended the current iteration."""
        return self._stopped

    @property
    def pages_fetched(self) -> int:
        """Return the number of pages fetched by the current iteration."""
        return self._pages_fetched

    def stop(self) -> None:
        """Stop the current iteration before the next page request."""
        self._stopped = True

    async def pages(self) -> AsyncIterator[TagPage]:
        """Yield pages of tags, following Link headers.

        Raises:
            ProtocolError: On a malformed body or Link header. The error's
                ``partial_tags`` holds every tag gathered before it,
                including those of the page whose Link header was bad.
        """
        self._stopped = False
        self._pages_fetched = 0
        gathered: list[str] = []
        url: str | None = self._first_url
        log = logger.bind(repository=self.repository)

        while url is not None and not self._stopped:
            if self.page_limit is not None and self._pages_fetched >= self.page_limit:
                log.debug("tag_page_limit_reached", page_limit=self.page_limit)
                break

            response = await self._fetch_page(url)
            tags = _decode_tags(response, gathered)
            gathered.extend(tags)
            self._pages_fetched += 1

            link_error: ProtocolError | None = None
            try:
                next_url = next_page_url(response.headers.get("Link"), url)
            except ProtocolError as e:
                link_error = ProtocolError(str(e), partial_tags=gathered)
                next_url = None

            log.debug(
                "tag_page_fetched",
                page=self._pages_fetched,
                tags=len(tags),
                has_next=next_url is not None,
            )
            yield TagPage(number=self._pages_fetched, tags=tags, url=url, next_url=next_url)

            if link_error is not None:
                log.warning("tag_pagination_stopped", error=str(link_error), tags_gathered=len(gathered))
                raise link_error
            url = next_url

    async def _iterate(self) -> AsyncIterator[str]:
        async for page in self.pages():
            for tag in page.tags:
                if self._stopped:
                    return
                yield tag

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def collect(self) -> list[str]:
        """Iterate from the first page and return every tag."""
        return [tag async for tag in self]


__all__ = [
    "MAX_LINKS",
    "Link",
    "TagPage",
    "TagPager",
    "next_page_url",
    "parse_link_header",
]
