"""
Data models for the landing asset engine.

These models describe what flows between components:
- ImageCandidate: a ranked search or generation result (immutable)
- CacheEntry / CacheIndex: the asset cache's durable index (index.json)
- EnrichmentContext: per-run parameters supplied by the caller
- SlotOutcome / EnrichmentReport: diagnostics of a pipeline run
"""
import enum
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now():
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ProviderName(str, enum.Enum):
    """Where an image candidate came from."""
    UNSPLASH = "unsplash"
    PEXELS = "pexels"
    PIXABAY = "pixabay"
    GENERATIVE = "generative"


class ImageSource(str, enum.Enum):
    """How an image slot ended up populated."""
    EXISTING = "existing"        # Already held a valid image, left untouched
    STOCK = "stock"
    GENERATIVE = "generative"
    PLACEHOLDER = "placeholder"


# =============================================================================
# SEARCH RESULTS
# =============================================================================

class ImageCandidate(BaseModel):
    """A single image result, ranked by the provider that produced it."""
    model_config = ConfigDict(frozen=True)

    url: str
    thumbnail_url: str = ""
    alt_text: str = ""
    provider_name: ProviderName
    width: int = 0
    height: int = 0
    photographer: Optional[str] = None


# =============================================================================
# ASSET CACHE INDEX
# =============================================================================

class CacheEntry(BaseModel):
    """Metadata for one cached asset. The bytes live at local_path."""
    key: str
    source_id: str = Field(default="", description="URL or prompt the key was derived from")
    local_path: str
    mime_type: str
    size_bytes: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime = Field(default_factory=utc_now)
    provenance: str = Field(default="", description="Page or source this asset was fetched for")


class CacheIndex(BaseModel):
    """Durable key -> entry mapping plus aggregate bookkeeping."""
    entries: Dict[str, CacheEntry] = Field(default_factory=dict)
    total_size_bytes: int = 0
    last_cleanup_at: datetime = Field(default_factory=utc_now)

    def recompute_total(self) -> None:
        self.total_size_bytes = sum(entry.size_bytes for entry in self.entries.values())


class CacheStats(BaseModel):
    """Diagnostic snapshot of the cache."""
    entry_count: int = 0
    total_size_bytes: int = 0
    oldest_created_at: Optional[datetime] = None
    newest_created_at: Optional[datetime] = None


# =============================================================================
# ENRICHMENT RUN
# =============================================================================

class EnrichmentContext(BaseModel):
    """
    Per-run parameters for image enrichment.

    Example:
        EnrichmentContext(domain="bakery", subject_name="Rise & Shine")
    """
    domain: str = Field(default="business", description="Subject domain label, e.g. 'restaurant'")
    subject_name: str = Field(default="", description="Business or page subject name")
    max_external_calls: int = Field(default=50, ge=0, description="Cap on provider/download/generation calls")
    generation_enabled: bool = True
    page_id: Optional[str] = Field(default=None, description="Provenance label for cached assets")

    @property
    def provenance(self) -> str:
        return self.page_id or self.subject_name or self.domain


class SlotOutcome(BaseModel):
    """Result for one image slot (a field group, a gallery, or a list item)."""
    node_id: str
    path: str
    source: ImageSource
    provider: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class EnrichmentReport(BaseModel):
    """Which slots were resolved from which source, for observability."""
    outcomes: List[SlotOutcome] = Field(default_factory=list)
    external_calls: int = 0
    timed_out: bool = False

    def summary(self) -> Dict[str, int]:
        counts = {source.value: 0 for source in ImageSource}
        for outcome in self.outcomes:
            counts[outcome.source.value] += 1
        return counts
