"""
Generative image fallback.

Used when no stock provider has an image for a slot. The generated bytes go
straight into the asset cache, keyed by the prompt text, so an identical
prompt is never sent to a backend twice.

Backends are tried in the configured order; the first one that returns an
image wins and a failure falls through to the next. Each attempt consumes one
unit of the run budget.

Supported backends:
- pollinations: Pollinations.ai (no API key, GET returns image bytes)
- gemini: Gemini image models via generateContent (requires GEMINI_API_KEY)
- openai: DALL-E 3 (requires OPENAI_API_KEY)
- stable-diffusion: Local Automatic1111 API (SD_API_URL)
- none: generation disabled
"""
import base64
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

import httpx
import structlog

from shared.asset_cache import AssetCache, cache_key
from shared.config import AssetSettings, ConfigError
from shared.image_search import CallBudget
from shared.models import CacheEntry, ImageCandidate, ProviderName

logger = structlog.get_logger()

GENERATION_TIMEOUT_SECONDS = 120

DEFAULT_GEMINI_IMAGE_MODEL = "gemini-3-pro-image-preview"
DEFAULT_OPENAI_IMAGE_MODEL = "dall-e-3"
DEFAULT_POLLINATIONS_MODEL = "flux"

POLLINATIONS_URL = "https://image.pollinations.ai/prompt/"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_URL = "https://api.openai.com/v1/images/generations"

# Aspect hint -> (width, height) requested from pixel-size backends
ASPECT_SIZES = {
    "16:9": (1600, 900),
    "1:1": (1024, 1024),
    "4:3": (1024, 768),
    "3:4": (768, 1024),
    "9:16": (900, 1600),
}

NEGATIVE_PROMPT = "text, watermark, signature, logo, blurry, low quality"


def size_for_aspect(aspect_hint: str) -> Tuple[int, int]:
    return ASPECT_SIZES.get(aspect_hint, ASPECT_SIZES["16:9"])


def _openai_size(width: int, height: int) -> str:
    # DALL-E 3 only accepts three sizes
    if width > height:
        return "1792x1024"
    if height > width:
        return "1024x1792"
    return "1024x1024"


class GenerationError(Exception):
    """A backend returned no usable image."""


class GenerativeFallback:
    """Prompt -> cached image, via an ordered chain of generation backends."""

    def __init__(
        self,
        cache: AssetCache,
        provider: Union[str, Sequence[str]] = "pollinations",
        gemini_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        sd_api_url: str = "http://localhost:7860",
        image_model: Optional[str] = None,
        generated_base_url: str = "/generated-images",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = GENERATION_TIMEOUT_SECONDS,
    ):
        """
        Initialize the fallback.

        Args:
            provider: Backend name, comma list, or sequence of names in
                fallback order ("none" disables generation)
            image_model: Model override for the first backend in the chain

        Raises:
            ConfigError: If a backend in the chain needs a key that is missing
        """
        if isinstance(provider, str):
            provider = provider.split(",")
        self.providers: List[str] = [
            name.strip().lower() for name in provider if name.strip() and name.strip().lower() != "none"
        ]
        if "gemini" in self.providers and not gemini_api_key:
            raise ConfigError("gemini image generation requires GEMINI_API_KEY")
        if "openai" in self.providers and not openai_api_key:
            raise ConfigError("openai image generation requires OPENAI_API_KEY")

        self.cache = cache
        self.gemini_api_key = gemini_api_key
        self.openai_api_key = openai_api_key
        self.sd_api_url = sd_api_url.rstrip("/")
        self.image_model = image_model
        self.generated_base_url = generated_base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(
        cls,
        settings: AssetSettings,
        cache: AssetCache,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "GenerativeFallback":
        return cls(
            cache,
            provider=settings.generation_chain,
            gemini_api_key=settings.gemini_api_key,
            openai_api_key=settings.openai_api_key,
            sd_api_url=settings.sd_api_url,
            image_model=settings.image_model,
            generated_base_url=settings.generated_base_url,
            client=client,
            timeout=max(settings.http_timeout_seconds, GENERATION_TIMEOUT_SECONDS),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.providers)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client (only if this instance created it)."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def public_url(self, entry: CacheEntry) -> str:
        """URL under which the app serves a cached generated asset."""
        return f"{self.generated_base_url}/{Path(entry.local_path).name}"

    async def generate(
        self,
        prompt: str,
        aspect_hint: str = "16:9",
        budget: Optional[CallBudget] = None,
        provenance: str = "",
    ) -> Optional[ImageCandidate]:
        """
        Generate (or reuse) an image for prompt.

        Args:
            prompt: Full generation prompt; also the cache identity
            aspect_hint: "16:9", "1:1", "4:3", "3:4" or "9:16"
            budget: Optional run budget; only a backend call consumes it
            provenance: Page/source label recorded on the cache entry

        Returns:
            A generative ImageCandidate, or None if generation is disabled,
            the budget ran out, or every backend in the chain failed

        Raises:
            OSError: If the cache cannot persist the generated bytes
        """
        if not self.enabled:
            return None

        width, height = size_for_aspect(aspect_hint)
        key = cache_key(prompt)

        cached = await self.cache.lookup(key)
        if cached:
            logger.debug("generated_image_cache_hit", key=key)
            return self._candidate(cached, prompt, width, height)

        for name in self.providers:
            if budget is not None and not budget.try_acquire():
                logger.warning("call_budget_exhausted", stage="generation", provider=name, prompt=prompt[:50])
                return None

            try:
                data, mime_type = await self._call_backend(name, prompt, width, height)
            except (httpx.HTTPError, GenerationError, KeyError, IndexError, TypeError, ValueError) as e:
                logger.error(
                    "image_generation_failed",
                    provider=name,
                    prompt=prompt[:50],
                    error=str(e),
                )
                continue

            entry = await self.cache.store(key, data, mime_type, provenance=provenance, source_id=prompt)
            logger.info("image_generated", provider=name, prompt=prompt[:50], size_kb=round(len(data) / 1024, 1))
            return self._candidate(entry, prompt, width, height)

        logger.warning("image_generation_exhausted", providers=self.providers, prompt=prompt[:50])
        return None

    def _candidate(self, entry: CacheEntry, prompt: str, width: int, height: int) -> ImageCandidate:
        url = self.public_url(entry)
        return ImageCandidate(
            url=url,
            thumbnail_url=url,
            alt_text=prompt.split("\n", 1)[0][:200],
            provider_name=ProviderName.GENERATIVE,
            width=width,
            height=height,
        )

    # -------------------------------------------------------------------------
    # Backends
    # -------------------------------------------------------------------------

    def _model_for(self, name: str, default: str) -> str:
        # IMAGE_MODEL names a model of the primary backend only
        if self.image_model and self.providers and name == self.providers[0]:
            return self.image_model
        return default

    async def _call_backend(self, name: str, prompt: str, width: int, height: int) -> Tuple[bytes, str]:
        if name == "pollinations":
            return await self._pollinations(prompt, width, height)
        if name == "gemini":
            return await self._gemini(prompt)
        if name == "openai":
            return await self._openai(prompt, width, height)
        if name == "stable-diffusion":
            return await self._stable_diffusion(prompt, width, height)
        raise GenerationError(f"Unknown image provider: {name}")

    async def _pollinations(self, prompt: str, width: int, height: int) -> Tuple[bytes, str]:
        client = await self._get_client()
        response = await client.get(
            POLLINATIONS_URL + quote(prompt, safe=""),
            params={
                "width": width,
                "height": height,
                "model": self._model_for("pollinations", DEFAULT_POLLINATIONS_MODEL),
                "nologo": "true",
            },
        )
        response.raise_for_status()

        mime_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if not mime_type.startswith("image/") or not response.content:
            raise GenerationError(f"pollinations returned {mime_type or 'no content-type'}")
        return response.content, mime_type

    async def _gemini(self, prompt: str) -> Tuple[bytes, str]:
        client = await self._get_client()
        response = await client.post(
            GEMINI_URL.format(model=self._model_for("gemini", DEFAULT_GEMINI_IMAGE_MODEL)),
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": self.gemini_api_key,
            },
            json={
                "contents": [{"parts": [{"text": f"Generate an image: {prompt}"}]}],
                "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
            },
        )
        response.raise_for_status()
        data = response.json()

        for part in data["candidates"][0]["content"]["parts"]:
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"]), inline.get("mimeType", "image/png")
        raise GenerationError("gemini response contained no image")

    async def _openai(self, prompt: str, width: int, height: int) -> Tuple[bytes, str]:
        client = await self._get_client()
        response = await client.post(
            OPENAI_URL,
            headers={
                "Authorization": f"Bearer {self.openai_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self._model_for("openai", DEFAULT_OPENAI_IMAGE_MODEL),
                "prompt": prompt,
                "n": 1,
                "size": _openai_size(width, height),
                "quality": "standard",
                "response_format": "b64_json",
            },
        )
        response.raise_for_status()
        data = response.json()
        return base64.b64decode(data["data"][0]["b64_json"]), "image/png"

    async def _stable_diffusion(self, prompt: str, width: int, height: int) -> Tuple[bytes, str]:
        client = await self._get_client()
        response = await client.post(
            f"{self.sd_api_url}/sdapi/v1/txt2img",
            json={
                "prompt": prompt,
                "negative_prompt": NEGATIVE_PROMPT,
                "width": width,
                "height": height,
                "steps": 20,
                "cfg_scale": 7,
            },
        )
        response.raise_for_status()
        data = response.json()
        return base64.b64decode(data["images"][0]), "image/png"
