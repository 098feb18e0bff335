"""
Image reference validation and deterministic placeholders.

is_valid_image_url() is the one predicate used everywhere an image reference
is judged: the pipeline's skip decision and provider result construction.

Placeholders are pure functions of an identity string (e.g. "hero+bakery" or
a person's name), so repeated runs over the same content produce the same
references and never need the network.
"""
import hashlib
from typing import Any
from urllib.parse import quote, quote_plus, urlparse

# Placeholder services that return broken or throwaway images
KNOWN_BAD_PATTERNS = [
    "via.placeholder",
    "placeholder.com",
    "placehold.it",
    "dummyimage.com",
    "fakeimg.pl",
    "lorempixel.com",
    "placekitten.com",
    "loremflickr.com",
    "source.unsplash.com",  # Retired endpoint
]

# Background/foreground pairs for section placeholders
PLACEHOLDER_PALETTE = [
    ("1a1a2e", "eaeaea"),
    ("667eea", "ffffff"),
    ("764ba2", "ffffff"),
    ("11998e", "ffffff"),
    ("f5576c", "ffffff"),
    ("4facfe", "0b1f33"),
    ("43e97b", "0b2b1a"),
    ("fa709a", "ffffff"),
]

PLACEHOLDER_BASE_URL = "https://placehold.co"
AVATAR_BASE_URL = "https://i.pravatar.cc"


def is_valid_image_url(value: Any) -> bool:
    """
    Return True if value looks like a usable image reference.

    Accepts absolute http(s) URLs with a host, site-relative paths
    ("/generated-images/..."), and data:image URIs. Rejects empty values,
    the strings "undefined"/"null", free-text descriptions, and known
    throwaway placeholder services.
    """
    if not isinstance(value, str):
        return False

    url = value.strip()
    if not url or url in ("undefined", "null", "None"):
        return False

    if url.startswith("data:image/"):
        return True
    if url.startswith("/") and not url.startswith("//"):
        return True
    if not url.startswith(("http://", "https://")):
        return False

    if not urlparse(url).netloc:
        return False

    lowered = url.lower()
    return not any(pattern in lowered for pattern in KNOWN_BAD_PATTERNS)


def _identity_digest(identity: str) -> str:
    return hashlib.sha256(identity.strip().lower().encode("utf-8")).hexdigest()


def placeholder_image_url(identity: str, width: int = 1600, height: int = 900) -> str:
    """Deterministic placeholder for a section image, keyed by identity."""
    digest = _identity_digest(identity)
    background, foreground = PLACEHOLDER_PALETTE[int(digest[:8], 16) % len(PLACEHOLDER_PALETTE)]
    label = quote_plus(identity.strip() or "image")
    return f"{PLACEHOLDER_BASE_URL}/{width}x{height}/{background}/{foreground}?text={label}"


def avatar_placeholder_url(identity: str, size: int = 150) -> str:
    """Deterministic avatar for a person, keyed by their display name."""
    seed = identity.strip() or "anonymous"
    return f"{AVATAR_BASE_URL}/{size}?u={quote(seed, safe='')}"
