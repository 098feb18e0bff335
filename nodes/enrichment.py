"""
Landing page image enrichment.

Turns a content tree whose sections need images into one whose image fields
are populated. Each image slot (a section's image, a gallery, or one list
item such as a testimonial) goes through the same steps:

1. Skip: the slot already holds a valid image, leave it alone
2. Query: derive a stock query (or, for people, a portrait prompt)
3. Resolve: search stock providers in order, cache the picks
4. Fallback: generate an image; failing that, use a deterministic placeholder

Slots run concurrently (bounded by a semaphore) under a run-wide call budget
and deadline. Tasks only compute URLs; all writes into the caller's tree
happen afterwards, in document order. Any failure inside a slot degrades that
slot to placeholders, so a run always returns a complete tree.

Workflow nodes:
- enrich_landing_images: enrich a content tree
- get_asset_cache_stats: cache diagnostics
- clear_asset_cache: empty the cache
"""
import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Tuple

import structlog

from shared.asset_cache import AssetCache
from shared.config import AssetSettings, ConfigError, load_settings
from shared.content import ContentNode, ContentTree, SectionSchema
from shared.image_providers import build_stock_providers
from shared.image_search import CallBudget, SearchOrchestrator
from shared.image_validator import avatar_placeholder_url, is_valid_image_url, placeholder_image_url
from shared.models import EnrichmentContext, EnrichmentReport, ImageSource, SlotOutcome

from .downloader import AssetDownloader, BudgetExhausted, DownloadError
from .image_generation import GenerativeFallback, size_for_aspect
from .prompts import (
    gallery_identity,
    generation_prompt,
    item_identity,
    item_query,
    portrait_prompt,
    section_identity,
    section_query,
)
from .schemas import (
    ClearAssetCacheInput,
    ClearAssetCacheOutput,
    EnrichLandingImagesInput,
    EnrichLandingImagesOutput,
    GetAssetCacheStatsInput,
    GetAssetCacheStatsOutput,
)

logger = structlog.get_logger()

# Extra stock candidates requested so a failed download can fall through
EXTRA_CANDIDATES = 2


# =============================================================================
# SLOT PLANNING
# =============================================================================

@dataclass
class ImageSlot:
    """
    One independently resolvable unit of image work.

    placeholders and prompts hold one entry per image position in the slot
    (1 for field groups and list items, up to K for galleries). write() puts
    resolved URLs into the caller's field map.
    """
    node_id: str
    path: str
    query: Optional[str]
    prompts: List[str]
    placeholders: List[str]
    write: Callable[[List[str]], None]
    orientation: str = "landscape"
    aspect: str = "16:9"
    existing_urls: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.placeholders)

    @property
    def populated(self) -> bool:
        return not self.placeholders


def _first_valid(container: MutableMapping[str, Any], aliases: Tuple[str, ...]) -> Optional[str]:
    for alias in aliases:
        if is_valid_image_url(container.get(alias)):
            return container[alias]
    return None


def _alias_writer(container: MutableMapping[str, Any], aliases: Tuple[str, ...]) -> Callable[[List[str]], None]:
    def write(urls: List[str]) -> None:
        for alias in aliases:
            container[alias] = urls[0]
    return write


def _gallery_entry_url(entry: Any) -> Any:
    if isinstance(entry, dict):
        return entry.get("url")
    return entry


def _gallery_writer(
    fields: MutableMapping[str, Any],
    name: str,
    size: int,
    missing: List[int],
) -> Callable[[List[str]], None]:
    def write(urls: List[str]) -> None:
        images = fields.get(name)
        if not isinstance(images, list):
            images = []
            fields[name] = images
        while len(images) < size:
            images.append(None)
        for index, url in zip(missing, urls):
            if isinstance(images[index], dict):
                images[index]["url"] = url
            else:
                images[index] = url
    return write


def _item_label(item: MutableMapping[str, Any], schema: SectionSchema) -> str:
    for name in schema.item_label_fields:
        value = item.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def plan_slots(
    tree: ContentTree,
    context: EnrichmentContext,
    gallery_size: int = 6,
) -> List[ImageSlot]:
    """
    List every image slot in document order.

    Slots that already hold valid images are included with populated=True so
    they show up in the report; they are never resolved or written.
    """
    slots: List[ImageSlot] = []
    domain = context.domain or "business"

    for node in tree:
        schema = node.schema
        if schema is None or not schema.has_images:
            continue

        if schema.image_fields:
            slots.append(_plan_field_group(node, schema, domain, context.subject_name))
        if schema.gallery_field:
            slots.append(_plan_gallery(node, schema, domain, context.subject_name, gallery_size))
        if schema.item_list_fields:
            slots.extend(_plan_items(node, schema, domain))

    return slots


def _plan_field_group(node: ContentNode, schema: SectionSchema, domain: str, subject: str) -> ImageSlot:
    aliases = schema.image_fields
    path = "|".join(aliases)
    existing = _first_valid(node.fields, aliases)
    if existing:
        return ImageSlot(
            node_id=node.id, path=path, query=None, prompts=[], placeholders=[],
            write=lambda urls: None, existing_urls=[existing],
        )

    query = section_query(schema.kind, domain, subject)
    width, height = size_for_aspect(schema.aspect)
    return ImageSlot(
        node_id=node.id,
        path=path,
        query=query,
        prompts=[generation_prompt(query, domain, schema.aspect)],
        placeholders=[placeholder_image_url(section_identity(schema.kind, domain), width, height)],
        write=_alias_writer(node.fields, aliases),
        orientation=schema.orientation,
        aspect=schema.aspect,
    )


def _plan_gallery(
    node: ContentNode,
    schema: SectionSchema,
    domain: str,
    subject: str,
    gallery_size: int,
) -> ImageSlot:
    name = schema.gallery_field
    images = node.fields.get(name)
    if not isinstance(images, list):
        images = []

    size = max(gallery_size, len(images))
    missing = [
        i for i in range(size)
        if i >= len(images) or not is_valid_image_url(_gallery_entry_url(images[i]))
    ]
    existing = [_gallery_entry_url(images[i]) for i in range(len(images)) if i not in missing]

    if not missing:
        return ImageSlot(
            node_id=node.id, path=name, query=None, prompts=[], placeholders=[],
            write=lambda urls: None, existing_urls=existing,
        )

    query = section_query(schema.kind, domain, subject)
    width, height = size_for_aspect(schema.aspect)
    base_prompt = generation_prompt(query, domain, schema.aspect)
    return ImageSlot(
        node_id=node.id,
        path=name,
        query=query,
        prompts=[f"{base_prompt}\nVariation {i + 1}." for i in missing],
        placeholders=[placeholder_image_url(gallery_identity(domain, i), width, height) for i in missing],
        write=_gallery_writer(node.fields, name, size, missing),
        orientation=schema.orientation,
        aspect=schema.aspect,
        existing_urls=existing,
    )


def _plan_items(node: ContentNode, schema: SectionSchema, domain: str) -> List[ImageSlot]:
    list_name, items = node.item_list()
    slots = []
    aliases = schema.item_image_fields

    for index, item in enumerate(items):
        if not isinstance(item, MutableMapping):
            continue

        path = f"{list_name}[{index}]"
        existing = _first_valid(item, aliases)
        if existing:
            slots.append(ImageSlot(
                node_id=node.id, path=path, query=None, prompts=[], placeholders=[],
                write=lambda urls: None, existing_urls=[existing],
            ))
            continue

        label = _item_label(item, schema)
        if schema.portrait_items:
            # People get a portrait, never a generic stock photo
            role = item.get("role") if isinstance(item.get("role"), str) else None
            slots.append(ImageSlot(
                node_id=node.id,
                path=path,
                query=None,
                prompts=[portrait_prompt(label, role)],
                placeholders=[avatar_placeholder_url(label or f"{node.id}-{index}")],
                write=_alias_writer(item, aliases),
                orientation=schema.orientation,
                aspect=schema.aspect,
            ))
        else:
            title = label or schema.kind
            query = item_query(title, domain)
            width, height = size_for_aspect(schema.aspect)
            slots.append(ImageSlot(
                node_id=node.id,
                path=path,
                query=query,
                prompts=[generation_prompt(query, domain, schema.aspect)],
                placeholders=[placeholder_image_url(item_identity(title, domain), width, height)],
                write=_alias_writer(item, aliases),
                orientation=schema.orientation,
                aspect=schema.aspect,
            ))

    return slots


# =============================================================================
# PIPELINE
# =============================================================================

class EnrichmentPipeline:
    """Drives search, download, generation and placeholder fallback per slot."""

    def __init__(
        self,
        settings: AssetSettings,
        orchestrator: SearchOrchestrator,
        downloader: Optional[AssetDownloader] = None,
        generator: Optional[GenerativeFallback] = None,
    ):
        """
        Args:
            settings: Validated engine settings (limits, gallery size)
            orchestrator: Stock provider chain
            downloader: Caches stock picks (None disables caching of picks)
            generator: Generative fallback (None disables generation)
        """
        self.settings = settings
        self.orchestrator = orchestrator
        self.downloader = downloader
        self.generator = generator

    async def aclose(self):
        """Close every HTTP client the pipeline's components hold."""
        await self.orchestrator.close()
        if self.downloader:
            await self.downloader.close()
        if self.generator:
            await self.generator.close()

    async def enrich(self, tree: ContentTree, context: EnrichmentContext) -> ContentTree:
        """Populate missing image fields in place and return the same tree."""
        tree, _ = await self.enrich_with_report(tree, context)
        return tree

    async def enrich_with_report(
        self,
        tree: ContentTree,
        context: EnrichmentContext,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Tuple[ContentTree, EnrichmentReport]:
        """
        Populate missing image fields and report where each image came from.

        Args:
            tree: Content tree (its field maps are mutated in place)
            context: Domain, subject and per-run limits
            on_progress: Optional callback(completed, total) per finished slot

        Returns:
            Tuple of (tree, report)
        """
        slots = plan_slots(tree, context, self.settings.gallery_image_count)
        pending_slots = [slot for slot in slots if not slot.populated]
        budget = CallBudget(min(context.max_external_calls, self.settings.max_external_calls))

        logger.info(
            "enrichment_started",
            domain=context.domain,
            slots=len(slots),
            to_resolve=len(pending_slots),
            call_budget=budget.limit,
        )

        results = await self._resolve_all(pending_slots, context, budget, on_progress)

        report = EnrichmentReport(external_calls=budget.used)
        for slot in slots:
            if slot.populated:
                report.outcomes.append(SlotOutcome(
                    node_id=slot.node_id,
                    path=slot.path,
                    source=ImageSource.EXISTING,
                    urls=slot.existing_urls,
                ))
                continue

            outcome = results[id(slot)]
            if outcome.error == "deadline_exceeded":
                report.timed_out = True
            slot.write(outcome.urls)
            report.outcomes.append(outcome)

        logger.info(
            "enrichment_complete",
            domain=context.domain,
            external_calls=report.external_calls,
            timed_out=report.timed_out,
            **report.summary(),
        )
        return tree, report

    async def _resolve_all(
        self,
        slots: List[ImageSlot],
        context: EnrichmentContext,
        budget: CallBudget,
        on_progress: Optional[Callable[[int, int], None]],
    ) -> Dict[int, SlotOutcome]:
        if not slots:
            return {}

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        completed = 0

        async def run_with_progress(slot: ImageSlot) -> SlotOutcome:
            nonlocal completed
            async with semaphore:
                outcome = await self._run_slot(slot, context, budget)
            completed += 1
            if on_progress:
                on_progress(completed, len(slots))
            return outcome

        tasks = {id(slot): asyncio.create_task(run_with_progress(slot)) for slot in slots}
        done, pending = await asyncio.wait(tasks.values(), timeout=self.settings.deadline_seconds)

        if pending:
            logger.warning(
                "enrichment_deadline_exceeded",
                deadline_seconds=self.settings.deadline_seconds,
                abandoned=len(pending),
            )
            # Abandoned: cancelled but not awaited
            for task in pending:
                task.cancel()

        results = {}
        for slot in slots:
            task = tasks[id(slot)]
            if task in done and not task.cancelled():
                results[id(slot)] = task.result()
            else:
                results[id(slot)] = self._placeholder_outcome(slot, error="deadline_exceeded")
        return results

    async def _run_slot(self, slot: ImageSlot, context: EnrichmentContext, budget: CallBudget) -> SlotOutcome:
        try:
            return await self._resolve_slot(slot, context, budget)
        except Exception as e:
            logger.error("slot_degraded", node_id=slot.node_id, path=slot.path, error=str(e))
            return self._placeholder_outcome(slot, error=str(e))

    def _placeholder_outcome(self, slot: ImageSlot, error: Optional[str] = None) -> SlotOutcome:
        return SlotOutcome(
            node_id=slot.node_id,
            path=slot.path,
            source=ImageSource.PLACEHOLDER,
            urls=list(slot.placeholders),
            error=error,
        )

    async def _resolve_slot(self, slot: ImageSlot, context: EnrichmentContext, budget: CallBudget) -> SlotOutcome:
        urls: List[str] = []
        source = ImageSource.PLACEHOLDER
        provider: Optional[str] = None

        if slot.query:
            urls, provider = await self._resolve_stock(slot, context, budget)
            if urls:
                source = ImageSource.STOCK

        if not urls and context.generation_enabled and self.generator and self.generator.enabled:
            for prompt in slot.prompts:
                candidate = await self.generator.generate(
                    prompt,
                    aspect_hint=slot.aspect,
                    budget=budget,
                    provenance=context.provenance,
                )
                if candidate is None:
                    break
                urls.append(candidate.url)
            if urls:
                source = ImageSource.GENERATIVE
                provider = "generative"

        if len(urls) < slot.count:
            # Partial results are padded position by position
            urls.extend(slot.placeholders[len(urls):])

        logger.debug("slot_resolved", node_id=slot.node_id, path=slot.path, source=source.value, provider=provider)
        return SlotOutcome(
            node_id=slot.node_id,
            path=slot.path,
            source=source,
            provider=provider,
            urls=urls,
        )

    async def _resolve_stock(
        self,
        slot: ImageSlot,
        context: EnrichmentContext,
        budget: CallBudget,
    ) -> Tuple[List[str], Optional[str]]:
        candidates = await self.orchestrator.search(
            slot.query,
            count=slot.count + EXTRA_CANDIDATES,
            orientation=slot.orientation,
            budget=budget,
        )
        if not candidates:
            return [], None

        urls: List[str] = []
        for candidate in candidates:
            if len(urls) >= slot.count:
                break
            if candidate.url in urls:
                continue
            if self.downloader and self.settings.download_assets:
                try:
                    await self.downloader.fetch_with_cache(
                        candidate.url,
                        provenance=context.provenance,
                        budget=budget,
                    )
                except BudgetExhausted:
                    # The tree gets the provider URL either way; only the cache copy is skipped
                    logger.debug("stock_cache_warm_skipped", node_id=slot.node_id, url=candidate.url[:200])
                except DownloadError as e:
                    logger.warning("stock_pick_skipped", node_id=slot.node_id, url=candidate.url[:200], reason=e.reason)
                    continue
            urls.append(candidate.url)

        return urls, candidates[0].provider_name.value if urls else None


def build_pipeline(settings: AssetSettings, cache: Optional[AssetCache] = None) -> EnrichmentPipeline:
    """
    Wire providers, cache, downloader and generator from settings.

    Raises:
        ConfigError: If a configured provider or backend lacks credentials
    """
    cache = cache or get_asset_cache(settings)
    # Validates credentials before any HTTP client exists
    orchestrator = SearchOrchestrator(build_stock_providers(settings))
    generator = GenerativeFallback.from_settings(settings, cache) if settings.generation_enabled else None
    downloader = (
        AssetDownloader(cache, timeout=settings.http_timeout_seconds)
        if settings.download_assets else None
    )
    return EnrichmentPipeline(settings, orchestrator, downloader, generator)


# =============================================================================
# ASSET CACHE REGISTRY
# =============================================================================
# One AssetCache per cache directory per process: every pipeline touching a
# directory must share its lock.

_CACHES: Dict[str, AssetCache] = {}


def get_asset_cache(settings: AssetSettings, cache_dir: Optional[str] = None) -> AssetCache:
    """Return the process-wide AssetCache for a directory, creating it once."""
    directory = Path(cache_dir) if cache_dir else settings.cache_dir
    key = str(directory.resolve())
    cache = _CACHES.get(key)
    if cache is None:
        cache = AssetCache(
            directory,
            capacity_bytes=settings.cache_max_bytes,
            max_age=timedelta(days=settings.cache_max_age_days),
            eviction_margin_bytes=settings.cache_eviction_margin_bytes,
        )
        _CACHES[key] = cache
    return cache


# =============================================================================
# WORKFLOW NODES
# =============================================================================

async def enrich_landing_images(
    ctx,
    params: EnrichLandingImagesInput,
) -> EnrichLandingImagesOutput:
    """
    Populate missing images in a landing page content tree.

    Existing valid images are never touched. Missing ones are filled from
    stock providers, then the generative fallback, then deterministic
    placeholders, so the returned content is always complete.
    """
    ctx.report_input({
        "domain": params.domain,
        "subject_name": params.subject_name,
        "sections": len(params.content),
        "max_external_calls": params.max_external_calls,
        "generation_enabled": params.generation_enabled,
    })

    try:
        settings = load_settings(ctx.get_secret)
        pipeline = build_pipeline(settings)
    except ConfigError as e:
        logger.error("enrichment_config_invalid", error=str(e))
        ctx.report_output({"status": "error", "error": str(e)})
        return EnrichLandingImagesOutput(content=params.content, status="error", error=str(e))

    context = EnrichmentContext(
        domain=params.domain or "business",
        subject_name=params.subject_name,
        page_id=params.page_id,
        max_external_calls=(
            params.max_external_calls if params.max_external_calls is not None else settings.max_external_calls
        ),
        generation_enabled=params.generation_enabled,
    )

    def on_progress(completed: int, total: int) -> None:
        ctx.report_progress(int(completed / total * 100), f"Resolved {completed}/{total} image slots")

    tree = ContentTree.from_mapping(params.content)
    try:
        _, report = await pipeline.enrich_with_report(tree, context, on_progress=on_progress)
    finally:
        await pipeline.aclose()

    summary = report.summary()
    ctx.report_output({
        "status": "success",
        "summary": summary,
        "external_calls": report.external_calls,
        "timed_out": report.timed_out,
    })

    return EnrichLandingImagesOutput(
        content=params.content,
        summary=summary,
        outcomes=report.outcomes,
        external_calls=report.external_calls,
        timed_out=report.timed_out,
    )


async def get_asset_cache_stats(
    ctx,
    params: GetAssetCacheStatsInput,
) -> GetAssetCacheStatsOutput:
    """Report asset cache size and age bounds."""
    ctx.report_input({"cache_dir": params.cache_dir, "page_id": params.page_id})

    try:
        settings = load_settings(ctx.get_secret)
    except ConfigError as e:
        ctx.report_output({"status": "error", "error": str(e)})
        return GetAssetCacheStatsOutput(status="error", error=str(e))

    cache = get_asset_cache(settings, params.cache_dir)
    stats = cache.stats()
    page_assets = []
    if params.page_id:
        page_assets = [entry.local_path for entry in cache.entries_for_provenance(params.page_id)]

    ctx.report_output({
        "status": "success",
        "entry_count": stats.entry_count,
        "total_size_mb": round(stats.total_size_bytes / (1024 * 1024), 2),
    })

    return GetAssetCacheStatsOutput(
        entry_count=stats.entry_count,
        total_size_bytes=stats.total_size_bytes,
        capacity_bytes=cache.capacity_bytes,
        oldest_created_at=stats.oldest_created_at,
        newest_created_at=stats.newest_created_at,
        page_assets=page_assets,
    )


async def clear_asset_cache(
    ctx,
    params: ClearAssetCacheInput,
) -> ClearAssetCacheOutput:
    """Delete every cached asset and reset the index."""
    ctx.report_input({"cache_dir": params.cache_dir})

    try:
        settings = load_settings(ctx.get_secret)
    except ConfigError as e:
        ctx.report_output({"status": "error", "error": str(e)})
        return ClearAssetCacheOutput(status="error", error=str(e))

    cache = get_asset_cache(settings, params.cache_dir)
    before = cache.stats()
    await cache.clear()

    ctx.report_output({
        "status": "success",
        "removed_entries": before.entry_count,
        "freed_bytes": before.total_size_bytes,
    })

    return ClearAssetCacheOutput(
        removed_entries=before.entry_count,
        freed_bytes=before.total_size_bytes,
    )
