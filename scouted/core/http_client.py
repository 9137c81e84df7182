"""
Async HTTP client with rate limiting, retries, and caching.

Built on httpx with:
- Per-domain rate limiting
- Exponential backoff retry on timeouts and network errors
- Response caching (TTL-based, GET only)
- User-agent rotation
- Optional unverified-TLS client for hosts with broken certificate chains
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = structlog.get_logger(__name__)


# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
]


@dataclass
class CacheEntry:
    """Cached HTTP response."""
    content: bytes
    status_code: int
    headers: dict
    timestamp: float
    ttl: int


@dataclass
class RateLimiter:
    """Per-domain rate limiter."""
    requests_per_second: float = 2.0
    last_request: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def acquire(self) -> None:
        """Wait for rate limit slot."""
        async with self.lock:
            now = time.monotonic()
            min_interval = 1.0 / self.requests_per_second
            elapsed = now - self.last_request

            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)

            self.last_request = time.monotonic()


class HttpClient:
    """
    Async HTTP client with rate limiting, retries, and caching.

    Usage:
        async with HttpClient() as client:
            response = await client.get("https://example.com")
            html = response.text

    Non-2xx responses raise httpx.HTTPStatusError.
    """

    def __init__(
        self,
        requests_per_second: float = 2.0,
        timeout: float = 30.0,
        cache_ttl: int = 300,
        enable_cache: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            requests_per_second: Rate limit per domain
            timeout: Default request timeout in seconds
            cache_ttl: Cache TTL in seconds
            enable_cache: Enable response caching
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.requests_per_second = requests_per_second
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.enable_cache = enable_cache
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._insecure_client: Optional[httpx.AsyncClient] = None
        self._rate_limiters: dict[str, RateLimiter] = {}
        self._cache: dict[str, CacheEntry] = {}
        self._user_agent_index = 0

    def _build_client(self, verify: bool = True) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers={"Accept-Language": "en-IN,en;q=0.9"},
            verify=verify,
            transport=self.transport,
        )

    async def __aenter__(self) -> "HttpClient":
        """Enter async context."""
        self._client = self._build_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        for client in (self._client, self._insecure_client):
            if client:
                await client.aclose()
        self._client = None
        self._insecure_client = None

    def _get_rate_limiter(self, url: str) -> RateLimiter:
        """Get or create rate limiter for domain."""
        domain = urlparse(url).netloc
        if domain not in self._rate_limiters:
            self._rate_limiters[domain] = RateLimiter(
                requests_per_second=self.requests_per_second
            )
        return self._rate_limiters[domain]

    def _get_user_agent(self) -> str:
        """Get next user agent in rotation."""
        ua = USER_AGENTS[self._user_agent_index % len(USER_AGENTS)]
        self._user_agent_index += 1
        return ua

    def _cache_key(self, url: str, params: Optional[dict] = None) -> str:
        """Generate cache key for URL and query params."""
        key = url if not params else f"{url}?{sorted(params.items())}"
        return hashlib.md5(key.encode()).hexdigest()

    def _get_cached(self, key: str) -> Optional[CacheEntry]:
        """Get cached response if valid."""
        if not self.enable_cache:
            return None

        entry = self._cache.get(key)
        if entry is None:
            return None

        # Check TTL
        if time.time() - entry.timestamp > entry.ttl:
            del self._cache[key]
            return None

        return entry

    def _set_cached(self, key: str, response: httpx.Response) -> None:
        """Cache response."""
        if not self.enable_cache:
            return

        self._cache[key] = CacheEntry(
            content=response.content,
            status_code=response.status_code,
            headers=dict(response.headers),
            timestamp=time.time(),
            ttl=self.cache_ttl,
        )

    def _select_client(self, verify: bool) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        if verify:
            return self._client
        if self._insecure_client is None:
            logger.warning("tls_verification_disabled")
            self._insecure_client = self._build_client(verify=False)
        return self._insecure_client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _do_request(
        self,
        method: str,
        url: str,
        verify: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """Execute HTTP request with retry."""
        client = self._select_client(verify)

        # Add user agent unless the caller identifies itself
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("User-Agent", self._get_user_agent())

        response = await client.request(method, url, headers=headers, **kwargs)
        response.raise_for_status()

        return response

    async def get(
        self,
        url: str,
        use_cache: bool = True,
        verify: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """
        GET request with rate limiting and caching.

        Args:
            url: URL to fetch
            use_cache: Whether to use cache
            verify: Verify TLS certificates
            **kwargs: Additional httpx arguments (params, headers, timeout)

        Returns:
            httpx.Response object
        """
        cache_key = self._cache_key(url, kwargs.get("params"))

        if use_cache:
            cached = self._get_cached(cache_key)
            if cached:
                logger.debug("cache_hit", url=url)
                return httpx.Response(
                    status_code=cached.status_code,
                    headers=cached.headers,
                    content=cached.content,
                    request=httpx.Request("GET", url),
                )

        limiter = self._get_rate_limiter(url)
        await limiter.acquire()

        logger.debug("http_get", url=url)

        response = await self._do_request("GET", url, verify=verify, **kwargs)

        if response.status_code == 200:
            self._set_cached(cache_key, response)

        return response

    async def post(
        self,
        url: str,
        verify: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """
        POST request with rate limiting (never cached).

        Args:
            url: URL to post to
            verify: Verify TLS certificates
            **kwargs: httpx arguments (data, json, headers, timeout)

        Returns:
            httpx.Response object
        """
        limiter = self._get_rate_limiter(url)
        await limiter.acquire()

        logger.debug("http_post", url=url)

        return await self._do_request("POST", url, verify=verify, **kwargs)

    async def get_text(self, url: str, **kwargs) -> str:
        """GET request returning text content."""
        response = await self.get(url, **kwargs)
        return response.text

    async def get_json(self, url: str, **kwargs):
        """GET request returning decoded JSON."""
        response = await self.get(url, **kwargs)
        return response.json()

    def clear_cache(self) -> None:
        """Clear response cache."""
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        """Return number of cached responses."""
        return len(self._cache)
