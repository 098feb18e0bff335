"""
Shared test fixtures: fake workflow context, stub providers and generators,
a controllable clock, and helpers for building mock HTTP clients.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from shared.asset_cache import AssetCache
from shared.config import AssetSettings
from shared.models import ImageCandidate, ProviderName


class FakeCtx:
    """Records what a workflow node reports, serves secrets from a dict."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self.secrets = secrets or {}
        self.inputs: List[dict] = []
        self.outputs: List[dict] = []
        self.progress: List[tuple] = []

    def report_input(self, data: dict):
        self.inputs.append(data)

    def report_output(self, data: dict):
        self.outputs.append(data)

    def report_progress(self, pct: int, message: str = ""):
        self.progress.append((pct, message))

    def get_secret(self, name: str) -> Optional[str]:
        return self.secrets.get(name)


class FakeClock:
    """Deterministic clock; every reading advances one second."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubProvider:
    """In-memory stand-in for an ImageProvider."""

    def __init__(
        self,
        name: str,
        results: Optional[List[ImageCandidate]] = None,
        error: Optional[Exception] = None,
        delay: float = 0,
    ):
        self.name = ProviderName(name)
        self.results = results or []
        self.error = error
        self.delay = delay
        self.calls: List[dict] = []
        self.closed = False

    async def search(self, query: str, count: int = 1, orientation: str = "landscape"):
        self.calls.append({"query": query, "count": count, "orientation": orientation})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.results[:count]

    async def close(self):
        self.closed = True


class StubGenerator:
    """Generative fallback double; returns site-relative URLs or fails."""

    enabled = True

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[dict] = []

    async def generate(self, prompt: str, aspect_hint: str = "16:9", budget=None, provenance: str = ""):
        self.calls.append({"prompt": prompt, "aspect_hint": aspect_hint, "provenance": provenance})
        if self.fail:
            return None
        return ImageCandidate(
            url=f"/generated-images/{len(self.calls)}.png",
            provider_name=ProviderName.GENERATIVE,
        )

    async def close(self):
        pass


def make_candidate(url: str, provider: str = "pexels") -> ImageCandidate:
    return ImageCandidate(url=url, thumbnail_url=url, alt_text="photo", provider_name=ProviderName(provider))


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def image_response(data: bytes = b"\x89PNG fake image bytes", mime_type: str = "image/png") -> httpx.Response:
    return httpx.Response(200, content=data, headers={"content-type": mime_type})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock):
    return AssetCache(tmp_path / "assets", clock=clock)


@pytest.fixture
def settings(tmp_path):
    return AssetSettings(
        cache_dir=tmp_path / "assets",
        generation_provider="none",
        deadline_seconds=5,
    )
