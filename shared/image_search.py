"""
Stock image search across a prioritized provider chain.

The orchestrator queries providers strictly in order and returns the first
non-empty result. Provider failures fall through to the next provider; an
exhausted chain yields an empty list, which callers treat as "no stock image"
rather than an error.

CallBudget caps the number of outbound calls a single enrichment run may
make (provider searches, downloads and generations all draw from it).
"""
from typing import List, Optional, Sequence

import structlog

from .image_providers import ImageProvider
from .models import ImageCandidate

logger = structlog.get_logger()


class CallBudget:
    """
    Run-wide cap on external calls.

    Tasks run on one event loop and try_acquire() never awaits, so the
    check-and-decrement is atomic without a lock.
    """

    def __init__(self, limit: int):
        self.limit = max(0, limit)
        self.used = 0

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def try_acquire(self) -> bool:
        """Consume one call if any remain. Returns False when exhausted."""
        if self.used >= self.limit:
            return False
        self.used += 1
        return True


class SearchOrchestrator:
    """Fallback chain over stock providers, in priority order."""

    def __init__(self, providers: Sequence[ImageProvider]):
        self.providers = list(providers)

    @property
    def provider_names(self) -> List[str]:
        return [provider.name.value for provider in self.providers]

    async def search(
        self,
        query: str,
        count: int = 1,
        orientation: str = "landscape",
        budget: Optional[CallBudget] = None,
    ) -> List[ImageCandidate]:
        """
        Return the first non-empty provider result, truncated to count.

        Args:
            query: Search terms
            count: Number of candidates wanted
            orientation: Orientation hint passed to each provider
            budget: Optional run budget; each provider call consumes one unit

        Returns:
            Candidates from a single provider, or [] if every provider came
            up empty, failed, or the budget ran out
        """
        for provider in self.providers:
            if budget is not None and not budget.try_acquire():
                logger.warning("call_budget_exhausted", stage="stock_search", query=query)
                return []

            try:
                results = await provider.search(query, count=count, orientation=orientation)
            except Exception as e:
                logger.error("image_provider_failed", provider=provider.name.value, query=query, error=str(e))
                continue

            if results:
                logger.info(
                    "stock_search_hit",
                    provider=provider.name.value,
                    query=query,
                    count=len(results),
                )
                return list(results[:count])

        logger.info("stock_search_exhausted", query=query, providers=self.provider_names)
        return []

    async def close(self):
        """Close every provider's HTTP client."""
        for provider in self.providers:
            await provider.close()
