import hashlib
import logging
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from core.config import ScanConfig
from core.context import ResponseSnapshot
from core.errors import FetchError
from core.html_utils import extract_icon_links, extract_meta_refresh, get_title
from models.fingerprint import RequestTemplate

logger = logging.getLogger(__name__)


def normalize_target(target: str) -> str:
    """Add a scheme to bare host[:port] targets."""
    target = target.strip()
    if "://" not in target:
        target = f"http://{target}"
    return target


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


async def fetch_url(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    data: Optional[str] = None
) -> httpx.Response:
    """
    Issue one request without following redirects.

    Args:
        client: The client carrying timeout, proxy and TLS settings
        url: The URL to fetch
        method: HTTP method (GET, POST, etc.)
        headers: Optional dictionary of HTTP headers
        data: Optional request body

    Returns:
        httpx.Response object

    Raises:
        FetchError: on timeout, connection, TLS or URL errors
    """
    logger.debug(f"HTTP {method} {url}")
    try:
        response = await client.request(method, url, headers=headers, content=data or None)
    except httpx.TimeoutException as e:
        raise FetchError(url, f"timeout ({e.__class__.__name__})") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise FetchError(url, str(e) or e.__class__.__name__) from e

    logger.debug(f"HTTP {response.status_code} {url} ({len(response.content)} bytes)")
    # Don't raise for status - error pages are evidence too
    return response


def next_hop(response: httpx.Response) -> Optional[str]:
    """Where a response sends the client next, via Location or meta refresh."""
    base = str(response.url)
    if response.is_redirect:
        return urljoin(base, response.headers["location"])
    return extract_meta_refresh(response.text, base)


class ResponseFetcher:
    """Executes probes and turns responses into snapshots."""

    def __init__(self, config: Optional[ScanConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or ScanConfig()
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout_config = httpx.Timeout(
            timeout=self.config.timeout,
            connect=self.config.connect_timeout
        )
        return httpx.AsyncClient(
            timeout=timeout_config,
            follow_redirects=False,
            verify=self.config.verify_tls,
            proxy=self.config.proxy,
            transport=self.transport,
        )

    def _headers(self, request_template: RequestTemplate) -> Dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        headers.update(self.config.custom_headers)
        headers.update(request_template.headers)
        return headers

    async def fetch(
        self,
        target: str,
        request_template: RequestTemplate,
        follow_redirects: bool,
        is_special: bool
    ) -> List[ResponseSnapshot]:
        """
        Run one probe against `target`.

        The root probe (follow_redirects=True) records a snapshot for every
        redirect hop. A special probe requests the template path on the
        target's origin and returns exactly one snapshot, redirect or not.

        Raises:
            FetchError: if the first request fails.
        """
        target = normalize_target(target)
        if is_special:
            url = origin_of(target) + request_template.path
        else:
            parts = urlsplit(target)
            url = target if parts.path else parts._replace(path="/").geturl()

        headers = self._headers(request_template)
        method = request_template.method
        body = request_template.body
        snapshots: List[ResponseSnapshot] = []
        icon_hashes: Dict[str, Optional[str]] = {}
        visited = set()

        async with self._client() as client:
            for hop in range(self.config.max_redirects + 1):
                visited.add(url)
                try:
                    response = await fetch_url(client, url, method, headers, body)
                except FetchError:
                    if not snapshots:
                        raise
                    logger.debug(f"Redirect hop {hop} to {url} failed, keeping {len(snapshots)} snapshots")
                    break

                if is_special:
                    snapshots.append(self._special_snapshot(response))
                else:
                    snapshots.append(await self._root_snapshot(client, response, icon_hashes))

                if not follow_redirects:
                    break
                url = next_hop(response)
                if not url or url in visited:
                    break
                # Redirects are followed with a plain GET
                method, body = "GET", ""

        return snapshots

    def _special_snapshot(self, response: httpx.Response) -> ResponseSnapshot:
        asset_hashes = {}
        # Icons are often served as octet-stream or text, so any 200 body counts
        if response.status_code == 200 and response.content:
            asset_hashes[str(response.url)] = hashlib.md5(response.content).hexdigest()
        return self._snapshot(response, asset_hashes)

    async def _root_snapshot(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        icon_hashes: Dict[str, Optional[str]]
    ) -> ResponseSnapshot:
        base = str(response.url)
        icons = extract_icon_links(response.text, base)
        default_icon = urljoin(base, "/favicon.ico")
        if default_icon not in icons:
            icons.append(default_icon)

        asset_hashes = {}
        for icon_url in icons:
            if icon_url not in icon_hashes:
                icon_hashes[icon_url] = await self._favicon_hash(client, icon_url)
            if icon_hashes[icon_url]:
                asset_hashes[icon_url] = icon_hashes[icon_url]
        return self._snapshot(response, asset_hashes)

    async def _favicon_hash(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        """Fetch an icon and compute its MD5 hash."""
        try:
            resp = await fetch_url(client, url, headers={"User-Agent": self.config.user_agent})
        except FetchError as e:
            logger.debug(f"Favicon fetch failed: {e}")
            return None
        if resp.status_code == 200 and resp.content:
            return hashlib.md5(resp.content).hexdigest()
        return None

    def _snapshot(self, response: httpx.Response, asset_hashes: Dict[str, str]) -> ResponseSnapshot:
        text = response.text
        return ResponseSnapshot(
            url=str(response.url),
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=text,
            title=get_title(text),
            asset_hashes=asset_hashes,
        )
