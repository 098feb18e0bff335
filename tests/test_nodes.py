"""
Tests for the workflow node functions (fake ctx, no network).
"""
import asyncio

from nodes.enrichment import (
    clear_asset_cache,
    enrich_landing_images,
    get_asset_cache,
    get_asset_cache_stats,
)
from nodes.schemas import (
    ClearAssetCacheInput,
    EnrichLandingImagesInput,
    GetAssetCacheStatsInput,
)
from shared.config import load_settings
from shared.image_validator import placeholder_image_url

from conftest import FakeCtx


def offline_secrets(tmp_path):
    # No stock keys and no generation: everything resolves to placeholders
    return {
        "ASSET_CACHE_DIR": str(tmp_path / "assets"),
        "IMAGE_GENERATION_PROVIDER": "none",
    }


def test_enrich_landing_images_fills_content(tmp_path):
    ctx = FakeCtx(offline_secrets(tmp_path))
    content = [
        {"id": "hero", "type": "hero", "content": {"headline": "Fresh bread"}},
        {"id": "cta", "type": "cta", "content": {"label": "Order now"}},
    ]

    result = asyncio.run(enrich_landing_images(ctx, EnrichLandingImagesInput(
        content=content,
        domain="bakery",
        subject_name="Rise & Shine",
    )))

    assert result.status == "success"
    hero_fields = result.content[0]["content"]
    assert hero_fields["backgroundImage"] == placeholder_image_url("hero+bakery", 1600, 900)
    assert hero_fields["headline"] == "Fresh bread"
    assert result.content[1]["content"] == {"label": "Order now"}
    assert result.summary["placeholder"] == 1
    assert result.timed_out is False

    assert ctx.inputs[0]["domain"] == "bakery"
    assert ctx.outputs[-1]["status"] == "success"
    assert ctx.progress and ctx.progress[-1][0] == 100


def test_enrich_landing_images_reports_config_errors(tmp_path):
    secrets = offline_secrets(tmp_path)
    secrets["IMAGE_STOCK_PROVIDERS"] = "pexels"
    ctx = FakeCtx(secrets)
    content = {"hero": {"type": "hero", "fields": {}}}

    result = asyncio.run(enrich_landing_images(ctx, EnrichLandingImagesInput(content=content)))

    assert result.status == "error"
    assert "PEXELS_API_KEY" in result.error
    assert content["hero"]["fields"] == {}
    assert ctx.outputs[-1]["status"] == "error"


def test_enrich_landing_images_second_run_changes_nothing(tmp_path):
    ctx = FakeCtx(offline_secrets(tmp_path))
    content = {"about": {"type": "about", "fields": {}}, "g": {"type": "gallery", "fields": {}}}

    async def run():
        first = await enrich_landing_images(ctx, EnrichLandingImagesInput(content=content, domain="florist"))
        second = await enrich_landing_images(ctx, EnrichLandingImagesInput(content=first.content, domain="florist"))
        return first, second

    first, second = asyncio.run(run())

    assert second.content == first.content
    assert second.summary["existing"] == 2


def test_cache_stats_and_clear(tmp_path):
    ctx = FakeCtx(offline_secrets(tmp_path))
    cache = get_asset_cache(load_settings(ctx.get_secret))

    async def run():
        await cache.store("k1", b"12345", "image/png", provenance="page-7")
        await cache.store("k2", b"123", "image/jpeg", provenance="page-8")

        stats = await get_asset_cache_stats(ctx, GetAssetCacheStatsInput(page_id="page-7"))
        cleared = await clear_asset_cache(ctx, ClearAssetCacheInput())
        after = await get_asset_cache_stats(ctx, GetAssetCacheStatsInput())
        return stats, cleared, after

    stats, cleared, after = asyncio.run(run())

    assert stats.status == "success"
    assert stats.entry_count == 2
    assert stats.total_size_bytes == 8
    assert len(stats.page_assets) == 1
    assert stats.page_assets[0].endswith(".png")

    assert cleared.removed_entries == 2
    assert cleared.freed_bytes == 8

    assert after.entry_count == 0
    assert after.oldest_created_at is None


def test_one_cache_instance_per_directory(tmp_path):
    settings = load_settings(offline_secrets(tmp_path).get)
    assert get_asset_cache(settings) is get_asset_cache(settings)
    assert get_asset_cache(settings, str(tmp_path / "other")) is not get_asset_cache(settings)
