"""
Image download with cache-first lookup.

fetch_with_cache() checks the asset cache before going to the network, so an
image URL is fetched at most once across runs. The caching decision is made
here, close to the network call; callers just ask for a URL.

Failures raise DownloadError (HTTP errors, non-image bodies, oversize
bodies). An exhausted call budget raises its subclass BudgetExhausted: the
URL itself may be fine, it just was not fetched. Cache write errors
(OSError) propagate unchanged.
"""
from typing import Optional, Tuple

import httpx
import structlog

from shared.asset_cache import AssetCache, cache_key
from shared.image_search import CallBudget
from shared.models import CacheEntry

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; LandingAssetEngine/1.0)"

# Largest image body accepted from a provider
MAX_IMAGE_BYTES = 10 * 1024 * 1024


class DownloadError(Exception):
    """Raised when an image URL cannot be fetched into the cache."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason


class BudgetExhausted(DownloadError):
    """Raised when a cache miss cannot be fetched because the run budget is spent."""

    def __init__(self, url: str):
        super().__init__(url, "call budget exhausted")


class AssetDownloader:
    """Fetches image URLs into an AssetCache."""

    def __init__(
        self,
        cache: AssetCache,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
        max_bytes: int = MAX_IMAGE_BYTES,
    ):
        self.cache = cache
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": DEFAULT_USER_AGENT},
            )
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client (only if this downloader created it)."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_with_cache(
        self,
        url: str,
        provenance: str = "",
        budget: Optional[CallBudget] = None,
    ) -> Tuple[CacheEntry, bool]:
        """
        Return a cached copy of url, downloading it on a miss.

        Args:
            url: Absolute image URL
            provenance: Page/source label recorded on the cache entry
            budget: Optional run budget; only a network fetch consumes it

        Returns:
            Tuple of (entry, from_cache)

        Raises:
            DownloadError: If the image cannot be fetched or is not an image
            BudgetExhausted: If the URL is not cached and no calls remain
            OSError: If the cache cannot persist the bytes
        """
        key = cache_key(url)
        cached = await self.cache.lookup(key)
        if cached:
            return cached, True

        if budget is not None and not budget.try_acquire():
            logger.warning("call_budget_exhausted", stage="download", url=url[:200])
            raise BudgetExhausted(url)

        data, mime_type = await self._fetch(url)
        entry = await self.cache.store(key, data, mime_type, provenance=provenance, source_id=url)
        logger.info("image_downloaded", url=url[:200], size_kb=round(len(data) / 1024, 1))
        return entry, False

    async def _fetch(self, url: str) -> Tuple[bytes, str]:
        client = await self._get_client()
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("image_download_failed", url=url[:200], error=str(e))
            raise DownloadError(url, f"request failed ({e.__class__.__name__})") from e

        if response.status_code >= 400:
            logger.warning("image_download_failed", url=url[:200], status_code=response.status_code)
            raise DownloadError(url, f"HTTP {response.status_code}")

        mime_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if not mime_type.startswith("image/"):
            logger.warning("image_download_rejected", url=url[:200], content_type=mime_type)
            raise DownloadError(url, f"not an image ({mime_type or 'no content-type'})")

        data = response.content
        if not data:
            raise DownloadError(url, "empty body")
        if len(data) > self.max_bytes:
            logger.warning("image_download_rejected", url=url[:200], size_bytes=len(data))
            raise DownloadError(url, f"image too large ({len(data)} bytes)")

        return data, mime_type
