"""
Shared clients, models and infrastructure for the landing asset engine.
"""
from .asset_cache import AssetCache, cache_key, extension_for_mime
from .config import AssetSettings, ConfigError, load_settings
from .content import SECTION_SCHEMAS, ContentNode, ContentTree, SectionSchema
from .image_providers import ImageProvider, PexelsProvider, PixabayProvider, UnsplashProvider, build_stock_providers
from .image_search import CallBudget, SearchOrchestrator
from .image_validator import avatar_placeholder_url, is_valid_image_url, placeholder_image_url
from .models import (
    CacheEntry,
    CacheStats,
    EnrichmentContext,
    EnrichmentReport,
    ImageCandidate,
    ImageSource,
    ProviderName,
)

__all__ = [
    "AssetCache",
    "cache_key",
    "extension_for_mime",
    "AssetSettings",
    "ConfigError",
    "load_settings",
    "SECTION_SCHEMAS",
    "ContentNode",
    "ContentTree",
    "SectionSchema",
    "ImageProvider",
    "UnsplashProvider",
    "PexelsProvider",
    "PixabayProvider",
    "build_stock_providers",
    "CallBudget",
    "SearchOrchestrator",
    "avatar_placeholder_url",
    "is_valid_image_url",
    "placeholder_image_url",
    "CacheEntry",
    "CacheStats",
    "EnrichmentContext",
    "EnrichmentReport",
    "ImageCandidate",
    "ImageSource",
    "ProviderName",
]
