"""
Configuration for the landing asset engine.

All settings come from environment variables (the team's .env) or from a
secret lookup supplied by the workflow context. Values are validated once,
at startup, into an AssetSettings object that is passed explicitly to every
component. Anything wrong here raises ConfigError before a run begins.

Provider credentials:
- UNSPLASH_ACCESS_KEY, PEXELS_API_KEY, PIXABAY_API_KEY
- IMAGE_STOCK_PROVIDERS: comma list in priority order (default: every
  provider that has a credential, in the order unsplash, pexels, pixabay)

Generation:
- IMAGE_GENERATION_PROVIDERS: comma list of backends tried in order (pollinations,
  gemini, openai, stable-diffusion), or none. IMAGE_GENERATION_PROVIDER is read
  when the plural form is unset.
- GEMINI_API_KEY, OPENAI_API_KEY, SD_API_URL, IMAGE_MODEL
"""
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


# =============================================================================
# CONSTANTS
# =============================================================================

STOCK_PROVIDER_ORDER = ["unsplash", "pexels", "pixabay"]

# Env var holding each stock provider's credential
STOCK_PROVIDER_CREDENTIALS: Dict[str, str] = {
    "unsplash": "UNSPLASH_ACCESS_KEY",
    "pexels": "PEXELS_API_KEY",
    "pixabay": "PIXABAY_API_KEY",
}

GENERATION_PROVIDERS = ["pollinations", "gemini", "openai", "stable-diffusion", "none"]

MIB = 1024 * 1024


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid. Fatal at startup."""


# =============================================================================
# SETTINGS MODEL
# =============================================================================

class AssetSettings(BaseModel):
    """
    Validated engine settings.

    Example .env:
        PEXELS_API_KEY=...
        IMAGE_STOCK_PROVIDERS=pexels,pixabay
        ASSET_CACHE_DIR=/var/cache/landing-assets
        ENRICH_MAX_CONCURRENCY=8
    """
    # Stock providers
    unsplash_access_key: Optional[str] = None
    pexels_api_key: Optional[str] = None
    pixabay_api_key: Optional[str] = None
    stock_providers: Optional[List[str]] = Field(
        default=None,
        description="Explicit provider priority order; None means 'every provider with a key'"
    )

    # Generative fallback: one backend or a comma list tried in order
    generation_provider: str = "pollinations"
    image_model: Optional[str] = None
    gemini_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    sd_api_url: str = "http://localhost:7860"

    # Asset cache
    cache_dir: Path = Path("cache/assets")
    cache_max_bytes: int = Field(default=500 * MIB, gt=0)
    cache_max_age_days: float = Field(default=30, gt=0)
    cache_eviction_margin_bytes: int = Field(default=50 * MIB, ge=0)

    # Per-run limits
    max_external_calls: int = Field(default=50, ge=0)
    max_concurrency: int = Field(default=5, ge=1)
    deadline_seconds: Optional[float] = Field(default=60, description="None or 0 disables the deadline")
    download_assets: bool = True
    gallery_image_count: int = Field(default=6, ge=1, le=24)
    generated_base_url: str = "/generated-images"
    http_timeout_seconds: float = Field(default=30, gt=0)

    @field_validator("stock_providers")
    @classmethod
    def _known_stock_providers(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        unknown = [name for name in value if name not in STOCK_PROVIDER_CREDENTIALS]
        if unknown:
            raise ValueError(f"unknown stock providers: {', '.join(unknown)}")
        return value

    @field_validator("generation_provider")
    @classmethod
    def _known_generation_providers(cls, value: str) -> str:
        names = [part.strip().lower() for part in value.split(",") if part.strip()]
        if not names:
            raise ValueError("generation provider must not be empty")
        unknown = [name for name in names if name not in GENERATION_PROVIDERS]
        if unknown:
            raise ValueError(
                f"unknown generation provider '{unknown[0]}' (expected one of {', '.join(GENERATION_PROVIDERS)})"
            )
        if "none" in names and len(names) > 1:
            raise ValueError("'none' cannot be combined with other generation providers")
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate generation provider in '{value}'")
        return ",".join(names)

    @field_validator("deadline_seconds")
    @classmethod
    def _zero_deadline_is_none(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            return None
        return value

    def credential_for(self, provider: str) -> Optional[str]:
        """Return the configured credential for a stock provider, if any."""
        return {
            "unsplash": self.unsplash_access_key,
            "pexels": self.pexels_api_key,
            "pixabay": self.pixabay_api_key,
        }.get(provider)

    @property
    def generation_chain(self) -> List[str]:
        """Generation backends in fallback order ([] when disabled)."""
        if self.generation_provider == "none":
            return []
        return self.generation_provider.split(",")

    @property
    def generation_enabled(self) -> bool:
        return self.generation_provider != "none"


# =============================================================================
# LOADING
# =============================================================================

def _split_list(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None or not raw.strip():
        return None
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


def _parse_bool(raw: Optional[str]) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("true", "1", "yes", "on")


def load_settings(
    lookup: Callable[[str], Optional[str]] = os.environ.get,
) -> AssetSettings:
    """
    Build AssetSettings from environment-style lookups.

    Args:
        lookup: Callable returning the raw value for a variable name
            (defaults to os.environ.get; workflow nodes pass ctx.get_secret)

    Returns:
        Validated AssetSettings

    Raises:
        ConfigError: If any value fails validation
    """
    raw: Dict[str, object] = {
        "unsplash_access_key": lookup("UNSPLASH_ACCESS_KEY"),
        "pexels_api_key": lookup("PEXELS_API_KEY"),
        "pixabay_api_key": lookup("PIXABAY_API_KEY"),
        "stock_providers": _split_list(lookup("IMAGE_STOCK_PROVIDERS")),
        "generation_provider": lookup("IMAGE_GENERATION_PROVIDERS") or lookup("IMAGE_GENERATION_PROVIDER"),
        "image_model": lookup("IMAGE_MODEL"),
        "gemini_api_key": lookup("GEMINI_API_KEY"),
        "openai_api_key": lookup("OPENAI_API_KEY"),
        "sd_api_url": lookup("SD_API_URL"),
        "cache_dir": lookup("ASSET_CACHE_DIR"),
        "cache_max_bytes": lookup("ASSET_CACHE_MAX_BYTES"),
        "cache_max_age_days": lookup("ASSET_CACHE_MAX_AGE_DAYS"),
        "cache_eviction_margin_bytes": lookup("ASSET_CACHE_EVICTION_MARGIN_BYTES"),
        "max_external_calls": lookup("ENRICH_MAX_EXTERNAL_CALLS"),
        "max_concurrency": lookup("ENRICH_MAX_CONCURRENCY"),
        "deadline_seconds": lookup("ENRICH_DEADLINE_SECONDS"),
        "download_assets": _parse_bool(lookup("ENRICH_DOWNLOAD_ASSETS")),
        "gallery_image_count": lookup("GALLERY_IMAGE_COUNT"),
        "generated_base_url": lookup("GENERATED_IMAGES_BASE_URL"),
        "http_timeout_seconds": lookup("HTTP_TIMEOUT_SECONDS"),
    }
    # Unset variables fall back to model defaults
    values = {key: value for key, value in raw.items() if value not in (None, "")}

    try:
        return AssetSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid asset engine configuration:\n{e}") from e
