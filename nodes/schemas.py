"""
Pydantic schemas for workflow node inputs and outputs.

These provide type safety and validation for all node functions,
similar to LangGraph's typed state approach.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from shared.models import SlotOutcome


# =============================================================================
# IMAGE ENRICHMENT SCHEMAS
# =============================================================================

class EnrichLandingImagesInput(BaseModel):
    """Input for enrich_landing_images node."""
    content: Union[Dict[str, Any], List[Dict[str, Any]]] = Field(
        default_factory=dict,
        description="Content tree: {node_id: {type, fields}} or a list of {id, type, content} sections",
    )
    domain: str = Field(default="business", description="Business domain, e.g. 'restaurant'")
    subject_name: str = Field(default="", description="Business or page name")
    page_id: Optional[str] = Field(default=None, description="Provenance label for cached assets")
    max_external_calls: Optional[int] = Field(
        default=None,
        ge=0,
        description="Per-run call cap (falls back to ENRICH_MAX_EXTERNAL_CALLS)",
    )
    generation_enabled: bool = Field(default=True, description="Allow the generative fallback")


class EnrichLandingImagesOutput(BaseModel):
    """Output from enrich_landing_images node."""
    content: Union[Dict[str, Any], List[Dict[str, Any]]] = Field(default_factory=dict)
    summary: Dict[str, int] = Field(default_factory=dict, description="Slot count per source")
    outcomes: List[SlotOutcome] = Field(default_factory=list)
    external_calls: int = 0
    timed_out: bool = False
    status: str = "success"
    error: Optional[str] = None


# =============================================================================
# ASSET CACHE SCHEMAS
# =============================================================================

class GetAssetCacheStatsInput(BaseModel):
    """Input for get_asset_cache_stats node."""
    cache_dir: Optional[str] = Field(default=None, description="Override ASSET_CACHE_DIR")
    page_id: Optional[str] = Field(default=None, description="Also list assets cached for this page")


class GetAssetCacheStatsOutput(BaseModel):
    """Output from get_asset_cache_stats node."""
    entry_count: int = 0
    total_size_bytes: int = 0
    capacity_bytes: int = 0
    oldest_created_at: Optional[datetime] = None
    newest_created_at: Optional[datetime] = None
    page_assets: List[str] = Field(default_factory=list, description="Local paths cached for page_id")
    status: str = "success"
    error: Optional[str] = None


class ClearAssetCacheInput(BaseModel):
    """Input for clear_asset_cache node."""
    cache_dir: Optional[str] = Field(default=None, description="Override ASSET_CACHE_DIR")


class ClearAssetCacheOutput(BaseModel):
    """Output from clear_asset_cache node."""
    removed_entries: int = 0
    freed_bytes: int = 0
    status: str = "success"
    error: Optional[str] = None
