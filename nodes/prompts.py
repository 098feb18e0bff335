"""
Search queries and generation prompts for image enrichment.

All query/prompt templates used by the enrichment nodes are centralized here
for easier maintenance and iteration.
"""
from typing import Optional


# =============================================================================
# STOCK SEARCH QUERIES
# =============================================================================
# Keyed by section kind. {domain} is the business domain ("bakery"),
# {subject} the business/page name.

SECTION_QUERIES = {
    "hero": "{domain} business professional modern hero",
    "about": "{domain} team office professional collaboration",
    "gallery": "{domain} {subject} professional",
    "cta": "{domain} success achievement",
}

DEFAULT_SECTION_QUERY = "{domain} {subject} professional"

# Features/services items are searched by their own title
ITEM_QUERY = "{title} {domain}"


def _clean(text: str) -> str:
    return " ".join(text.split())


def section_query(kind: str, domain: str, subject: str = "") -> str:
    """Stock query for a section-level image (hero, about, gallery, ...)."""
    template = SECTION_QUERIES.get(kind, DEFAULT_SECTION_QUERY)
    return _clean(template.format(domain=domain or "business", subject=subject or ""))


def item_query(title: str, domain: str) -> str:
    """Stock query for a features/services list item."""
    return _clean(ITEM_QUERY.format(title=title or "", domain=domain or "business"))


# =============================================================================
# GENERATION PROMPTS
# =============================================================================

GENERATION_PROMPT = """{subject}.
Ultra-realistic photography, professional lighting, high resolution.
Professional landing page image for a {domain} business, clean composition, {aspect} framing.
No text, watermarks, or logos."""

# Neutral wording: no attributes are inferred from the person's name
PORTRAIT_PROMPT = (
    "Professional headshot portrait of {name}{role}, friendly smile, business attire, "
    "neutral background, high quality, photorealistic"
)


def generation_prompt(query: str, domain: str, aspect: str = "16:9") -> str:
    """Turn a stock query into a prompt for the generative fallback."""
    return GENERATION_PROMPT.format(subject=_clean(query), domain=domain or "business", aspect=aspect)


def portrait_prompt(name: str, role: Optional[str] = None) -> str:
    """Per-person portrait prompt for testimonial/team items."""
    role_desc = f", {role}" if role else ""
    return PORTRAIT_PROMPT.format(name=_clean(name) or "a business professional", role=role_desc)


# =============================================================================
# PLACEHOLDER IDENTITIES
# =============================================================================

def section_identity(kind: str, domain: str) -> str:
    return f"{kind}+{domain or 'business'}"


def gallery_identity(domain: str, position: int) -> str:
    return f"gallery+{domain or 'business'}+{position + 1}"


def item_identity(title: str, domain: str) -> str:
    return f"{title}+{domain or 'business'}"
