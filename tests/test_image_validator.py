"""
Tests for image reference validation and deterministic placeholders.
"""
import pytest

from shared.image_validator import avatar_placeholder_url, is_valid_image_url, placeholder_image_url


@pytest.mark.parametrize("value", [
    "https://images.pexels.com/photos/1/bakery.jpeg",
    "http://example.com/a.png",
    "/generated-images/abc.png",
    "data:image/png;base64,iVBORw0KGgo=",
    "https://placehold.co/1600x900/1a1a2e/eaeaea?text=hero+bakery",
    "https://i.pravatar.cc/150?u=Ana",
])
def test_valid_references(value):
    assert is_valid_image_url(value)


@pytest.mark.parametrize("value", [
    None,
    "",
    "   ",
    "undefined",
    "null",
    42,
    {"url": "https://example.com/a.png"},
    "A warm photo of fresh bread on a counter",
    "//cdn.example.com/a.png",
    "ftp://example.com/a.png",
    "https://",
    "https://via.placeholder.com/800x600",
    "https://source.unsplash.com/random/800x600",
    "https://dummyimage.com/600x400",
])
def test_invalid_references(value):
    assert not is_valid_image_url(value)


def test_placeholder_is_deterministic():
    assert placeholder_image_url("hero+bakery") == placeholder_image_url("hero+bakery")
    assert placeholder_image_url("hero+bakery") != placeholder_image_url("hero+florist")


def test_placeholder_is_itself_valid():
    url = placeholder_image_url("gallery+bakery+3", 1024, 768)
    assert url.startswith("https://placehold.co/1024x768/")
    assert url.endswith("?text=gallery%2Bbakery%2B3")
    assert is_valid_image_url(url)


def test_avatar_placeholder():
    url = avatar_placeholder_url("Carol Diaz")
    assert url == "https://i.pravatar.cc/150?u=Carol%20Diaz"
    assert avatar_placeholder_url("Carol Diaz") == url
    assert is_valid_image_url(url)
    assert avatar_placeholder_url("") == "https://i.pravatar.cc/150?u=anonymous"
