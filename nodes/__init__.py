"""
Node functions for the landing asset engine.

This package contains all workflow node implementations.
"""

from .enrichment import (
    EnrichmentPipeline,
    build_pipeline,
    get_asset_cache,
    # Workflow nodes
    enrich_landing_images,
    get_asset_cache_stats,
    clear_asset_cache,
)

from .downloader import (
    AssetDownloader,
    BudgetExhausted,
    DownloadError,
)

from .image_generation import (
    GenerativeFallback,
)
