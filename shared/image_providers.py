"""
Stock photo provider clients.

Each provider wraps one search API behind the same interface:
- search(query, count, orientation) -> List[ImageCandidate]

Authentication, endpoint, parameter mapping and response mapping live in the
subclass. Failures never escape search(): transport errors, non-2xx responses
and malformed bodies are logged and mapped to an empty list, so the
orchestrator can move on to the next provider.

Credentials are checked at construction. A provider that is configured but
has no key is a startup error (ConfigError), not a per-request one.
"""
import abc
from typing import Any, Dict, List, Optional

import httpx
import structlog

from .config import STOCK_PROVIDER_CREDENTIALS, STOCK_PROVIDER_ORDER, AssetSettings, ConfigError
from .image_validator import is_valid_image_url
from .models import ImageCandidate, ProviderName

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; LandingAssetEngine/1.0)"


class ImageProvider(abc.ABC):
    """Abstract stock photo search client."""

    name: ProviderName

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
    ):
        if not api_key:
            raise ConfigError(
                f"{self.name.value} provider requires {STOCK_PROVIDER_CREDENTIALS[self.name.value]}"
            )
        self.api_key = api_key
        self.timeout = timeout
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
        """Close the HTTP client (only if this provider created it)."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def search(
        self,
        query: str,
        count: int = 1,
        orientation: str = "landscape",
    ) -> List[ImageCandidate]:
        """
        Search for images. Never raises for remote failures.

        Args:
            query: Free-text search terms
            count: Desired number of results
            orientation: "landscape", "portrait" or "square"

        Returns:
            Candidates in the provider's ranking order (possibly empty)
        """
        try:
            client = await self._get_client()
            response = await client.get(
                self.endpoint,
                params=self._params(query, count, orientation),
                headers=self._headers(),
            )
            if response.status_code >= 400:
                logger.warning(
                    "image_provider_failed",
                    provider=self.name.value,
                    status_code=response.status_code,
                    query=query,
                )
                return []
            data = response.json()
            candidates = [c for c in self._parse(data) if is_valid_image_url(c.url)]
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("image_provider_failed", provider=self.name.value, query=query, error=str(e))
            return []

        logger.debug("image_provider_results", provider=self.name.value, query=query, count=len(candidates))
        return candidates[:count]

    # -------------------------------------------------------------------------
    # Per-provider mapping
    # -------------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def endpoint(self) -> str:
        """Search endpoint URL."""

    def _headers(self) -> Dict[str, str]:
        return {}

    @abc.abstractmethod
    def _params(self, query: str, count: int, orientation: str) -> Dict[str, Any]:
        """Query parameters for a search request."""

    @abc.abstractmethod
    def _parse(self, data: Dict[str, Any]) -> List[ImageCandidate]:
        """Map a response body to candidates."""


class UnsplashProvider(ImageProvider):
    """Unsplash search API (Client-ID header auth)."""

    name = ProviderName.UNSPLASH
    endpoint = "https://api.unsplash.com/search/photos"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Client-ID {self.api_key}", "Accept-Version": "v1"}

    def _params(self, query: str, count: int, orientation: str) -> Dict[str, Any]:
        return {
            "query": query,
            "per_page": max(1, min(count, 30)),
            # Unsplash calls square "squarish"
            "orientation": "squarish" if orientation == "square" else orientation,
        }

    def _parse(self, data: Dict[str, Any]) -> List[ImageCandidate]:
        candidates = []
        for photo in data.get("results") or []:
            urls = photo.get("urls") or {}
            candidates.append(ImageCandidate(
                url=urls.get("regular") or "",
                thumbnail_url=urls.get("small") or urls.get("thumb") or "",
                alt_text=photo.get("alt_description") or photo.get("description") or "",
                provider_name=self.name,
                width=photo.get("width") or 0,
                height=photo.get("height") or 0,
                photographer=(photo.get("user") or {}).get("name"),
            ))
        return candidates


class PexelsProvider(ImageProvider):
    """Pexels search API (raw key in Authorization header)."""

    name = ProviderName.PEXELS
    endpoint = "https://api.pexels.com/v1/search"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key}

    def _params(self, query: str, count: int, orientation: str) -> Dict[str, Any]:
        return {
            "query": query,
            "per_page": max(1, min(count, 80)),
            "orientation": orientation,
        }

    def _parse(self, data: Dict[str, Any]) -> List[ImageCandidate]:
        candidates = []
        for photo in data.get("photos") or []:
            src = photo.get("src") or {}
            candidates.append(ImageCandidate(
                url=src.get("large") or src.get("original") or "",
                thumbnail_url=src.get("medium") or src.get("small") or "",
                alt_text=photo.get("alt") or "",
                provider_name=self.name,
                width=photo.get("width") or 0,
                height=photo.get("height") or 0,
                photographer=photo.get("photographer"),
            ))
        return candidates


class PixabayProvider(ImageProvider):
    """Pixabay search API (key as query parameter)."""

    name = ProviderName.PIXABAY
    endpoint = "https://pixabay.com/api/"

    ORIENTATIONS = {"landscape": "horizontal", "portrait": "vertical", "square": "all"}

    def _params(self, query: str, count: int, orientation: str) -> Dict[str, Any]:
        return {
            "key": self.api_key,
            "q": query,
            # Pixabay rejects per_page outside 3..200
            "per_page": max(3, min(count, 200)),
            "orientation": self.ORIENTATIONS.get(orientation, "all"),
            "image_type": "photo",
            "safesearch": "true",
        }

    def _parse(self, data: Dict[str, Any]) -> List[ImageCandidate]:
        candidates = []
        for hit in data.get("hits") or []:
            tags = hit.get("tags") or ""
            candidates.append(ImageCandidate(
                url=hit.get("largeImageURL") or hit.get("webformatURL") or "",
                thumbnail_url=hit.get("previewURL") or "",
                alt_text=tags.split(",")[0].strip() if tags else "",
                provider_name=self.name,
                width=hit.get("imageWidth") or 0,
                height=hit.get("imageHeight") or 0,
                photographer=hit.get("user"),
            ))
        return candidates


PROVIDER_CLASSES = {
    "unsplash": UnsplashProvider,
    "pexels": PexelsProvider,
    "pixabay": PixabayProvider,
}


def build_stock_providers(
    settings: AssetSettings,
    client: Optional[httpx.AsyncClient] = None,
) -> List[ImageProvider]:
    """
    Build providers in configured priority order.

    With an explicit IMAGE_STOCK_PROVIDERS list, every listed provider must
    have a credential. Without one, every provider that has a credential is
    used, in the default order.

    Raises:
        ConfigError: If an explicitly configured provider has no credential
    """
    if settings.stock_providers is not None:
        names = settings.stock_providers
    else:
        names = [name for name in STOCK_PROVIDER_ORDER if settings.credential_for(name)]

    providers = [
        PROVIDER_CLASSES[name](
            settings.credential_for(name),
            client=client,
            timeout=settings.http_timeout_seconds,
        )
        for name in names
    ]

    if not providers:
        logger.warning("no_stock_providers_configured")
    else:
        logger.info("stock_providers_configured", providers=[p.name.value for p in providers])
    return providers
