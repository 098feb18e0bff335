"""
Tests for settings loading and validation.
"""
from pathlib import Path

import pytest

from shared.config import MIB, AssetSettings, ConfigError, load_settings


def lookup_from(values):
    return values.get


def test_defaults_when_nothing_is_set():
    settings = load_settings(lookup_from({}))

    assert settings.stock_providers is None
    assert settings.generation_provider == "pollinations"
    assert settings.generation_enabled
    assert settings.cache_dir == Path("cache/assets")
    assert settings.cache_max_bytes == 500 * MIB
    assert settings.cache_eviction_margin_bytes == 50 * MIB
    assert settings.max_external_calls == 50
    assert settings.max_concurrency == 5
    assert settings.deadline_seconds == 60
    assert settings.download_assets is True
    assert settings.gallery_image_count == 6


def test_values_are_parsed():
    settings = load_settings(lookup_from({
        "PEXELS_API_KEY": "pe",
        "IMAGE_STOCK_PROVIDERS": " Pexels, pixabay ,",
        "PIXABAY_API_KEY": "px",
        "IMAGE_GENERATION_PROVIDER": "None",
        "ASSET_CACHE_DIR": "/tmp/landing-assets",
        "ASSET_CACHE_MAX_BYTES": "1048576",
        "ENRICH_MAX_CONCURRENCY": "8",
        "ENRICH_DEADLINE_SECONDS": "0",
        "ENRICH_DOWNLOAD_ASSETS": "false",
        "GALLERY_IMAGE_COUNT": "4",
    }))

    assert settings.stock_providers == ["pexels", "pixabay"]
    assert settings.credential_for("pexels") == "pe"
    assert settings.credential_for("unsplash") is None
    assert settings.generation_provider == "none"
    assert not settings.generation_enabled
    assert settings.cache_dir == Path("/tmp/landing-assets")
    assert settings.cache_max_bytes == 1048576
    assert settings.max_concurrency == 8
    assert settings.deadline_seconds is None
    assert settings.download_assets is False
    assert settings.gallery_image_count == 4


def test_empty_values_fall_back_to_defaults():
    settings = load_settings(lookup_from({"ENRICH_MAX_CONCURRENCY": "", "IMAGE_STOCK_PROVIDERS": " "}))
    assert settings.max_concurrency == 5
    assert settings.stock_providers is None


@pytest.mark.parametrize("values", [
    {"IMAGE_STOCK_PROVIDERS": "shutterstock"},
    {"IMAGE_GENERATION_PROVIDER": "midjourney"},
    {"IMAGE_GENERATION_PROVIDERS": "pollinations,none"},
    {"IMAGE_GENERATION_PROVIDERS": "gemini,gemini"},
    {"ENRICH_MAX_CONCURRENCY": "0"},
    {"ASSET_CACHE_MAX_BYTES": "lots"},
    {"GALLERY_IMAGE_COUNT": "100"},
])
def test_invalid_values_raise_config_error(values):
    with pytest.raises(ConfigError):
        load_settings(lookup_from(values))


def test_config_error_is_value_error():
    assert issubclass(ConfigError, ValueError)


def test_negative_deadline_disables_it():
    assert AssetSettings(deadline_seconds=-1).deadline_seconds is None


def test_generation_chain_is_ordered():
    settings = load_settings(lookup_from({
        "IMAGE_GENERATION_PROVIDERS": " Pollinations, gemini ",
        "IMAGE_GENERATION_PROVIDER": "openai",
    }))

    assert settings.generation_chain == ["pollinations", "gemini"]
    assert settings.generation_enabled


def test_single_generation_provider_name_still_works():
    settings = load_settings(lookup_from({"IMAGE_GENERATION_PROVIDER": "stable-diffusion"}))
    assert settings.generation_chain == ["stable-diffusion"]
    assert AssetSettings(generation_provider="none").generation_chain == []
