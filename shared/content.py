"""
Content tree and per-section image schemas.

A landing page is an ordered set of sections (nodes). Each node has a kind
("hero", "gallery", "testimonials", ...) and a caller-owned field map. The
engine never copies those maps: it writes image references into them in
place and leaves every other field alone.

Which fields hold images is declared once per section kind in
SECTION_SCHEMAS, instead of being rediscovered with string checks at each
call site. Kinds without a schema have no image fields.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union


# =============================================================================
# SECTION SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class SectionSchema:
    """
    Declares the image reference fields of one section kind.

    image_fields: alias group for the section's single image. The group is
        populated if any alias holds a valid image; a resolved image is
        written to every alias.
    gallery_field: field holding an ordered list of images (strings or
        {"url": ...} objects), sized to the configured gallery count.
    item_list_fields: candidate fields holding a list of items; the first
        one present on the node is used.
    item_image_fields: alias group for each item's image.
    item_label_fields: item fields naming the item (first non-empty wins).
    portrait_items: items are people; they get portrait prompts and avatar
        placeholders instead of stock searches.
    """
    kind: str
    image_fields: Tuple[str, ...] = ()
    gallery_field: Optional[str] = None
    item_list_fields: Tuple[str, ...] = ()
    item_image_fields: Tuple[str, ...] = ("image",)
    item_label_fields: Tuple[str, ...] = ("title", "name")
    portrait_items: bool = False
    orientation: str = "landscape"
    aspect: str = "16:9"

    @property
    def has_images(self) -> bool:
        return bool(self.image_fields or self.gallery_field or self.item_list_fields)


SECTION_SCHEMAS: Dict[str, SectionSchema] = {
    "hero": SectionSchema(
        kind="hero",
        image_fields=("backgroundImage", "imageUrl"),
    ),
    "about": SectionSchema(
        kind="about",
        image_fields=("imageUrl",),
        aspect="4:3",
    ),
    "gallery": SectionSchema(
        kind="gallery",
        gallery_field="images",
        aspect="4:3",
    ),
    "features": SectionSchema(
        kind="features",
        item_list_fields=("features", "items"),
        item_image_fields=("image",),
        item_label_fields=("title", "name"),
        aspect="4:3",
    ),
    "services": SectionSchema(
        kind="services",
        item_list_fields=("services", "items"),
        item_image_fields=("image",),
        item_label_fields=("title", "name"),
        aspect="4:3",
    ),
    "testimonials": SectionSchema(
        kind="testimonials",
        item_list_fields=("testimonials", "items"),
        item_image_fields=("avatar", "image"),
        item_label_fields=("name", "author"),
        portrait_items=True,
        orientation="square",
        aspect="1:1",
    ),
    "team": SectionSchema(
        kind="team",
        item_list_fields=("members", "team", "items"),
        item_image_fields=("image", "avatar"),
        item_label_fields=("name",),
        portrait_items=True,
        orientation="square",
        aspect="1:1",
    ),
}


def schema_for(kind: str) -> Optional[SectionSchema]:
    """Schema for a section kind, or None if the kind carries no images."""
    return SECTION_SCHEMAS.get((kind or "").lower())


# =============================================================================
# CONTENT TREE
# =============================================================================

@dataclass
class ContentNode:
    """One page section. `fields` is the caller's own dict, mutated in place."""
    id: str
    type: str
    fields: MutableMapping[str, Any] = field(default_factory=dict)

    @property
    def schema(self) -> Optional[SectionSchema]:
        return schema_for(self.type)

    def item_list(self) -> Tuple[Optional[str], List[Any]]:
        """Return (field name, items) for list-bearing sections, else (None, [])."""
        schema = self.schema
        if schema is None:
            return None, []
        for name in schema.item_list_fields:
            items = self.fields.get(name)
            if isinstance(items, list):
                return name, items
        return None, []


@dataclass
class ContentTree:
    """Ordered node-id -> ContentNode mapping (document order)."""
    nodes: Dict[str, ContentNode] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ContentNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, node_id: str) -> ContentNode:
        return self.nodes[node_id]

    def get(self, node_id: str) -> Optional[ContentNode]:
        return self.nodes.get(node_id)

    @classmethod
    def from_mapping(cls, data: Union[Mapping[str, Any], List[Mapping[str, Any]]]) -> "ContentTree":
        """
        Wrap caller data without copying field maps.

        Accepts either {node_id: {"type": ..., "fields" | "content": {...}}}
        or a list of {"id": ..., "type": ..., "content": {...}} sections.
        A node without a field map gets an empty one attached to it, so
        writes still land in the caller's structure. In the list form a
        repeated id gets its list position appended ("hero-3"), so every
        section stays addressable.
        """
        nodes: Dict[str, ContentNode] = {}

        if isinstance(data, Mapping):
            pairs = [(str(node_id), raw) for node_id, raw in data.items()]
        else:
            pairs = [(str(raw.get("id") or f"section-{i}"), raw) for i, raw in enumerate(data)]

        for position, (node_id, raw) in enumerate(pairs):
            if not isinstance(raw, MutableMapping):
                continue
            while node_id in nodes:
                node_id = f"{node_id}-{position}"
            key = "fields" if "fields" in raw else "content"
            fields = raw.get(key)
            if not isinstance(fields, MutableMapping):
                fields = {}
                raw[key] = fields
            nodes[node_id] = ContentNode(id=node_id, type=str(raw.get("type", "")), fields=fields)

        return cls(nodes=nodes)

    def to_mapping(self) -> Dict[str, Dict[str, Any]]:
        """Plain {node_id: {"type", "fields"}} view (shares the field maps)."""
        return {node.id: {"type": node.type, "fields": node.fields} for node in self}
