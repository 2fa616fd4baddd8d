"""
Extraction schema builder.

Builds the strict JSON schema the LLM must answer with when extracting
products from a post. The fixed part (brand, name, prices, ...) is shaped
by the domain group; the nested ``attributes`` object is generated from the
StructureOutput rows of that group, so admins can change the extraction
contract without code changes.

The builder itself is pure: it takes a mapping of group -> attribute
definitions and returns an immutable ExtractionSchema. Loading (and caching)
the definitions from the database is a separate step.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from django.core.cache import cache

from catalog.models import StructureOutput

logger = logging.getLogger(__name__)

SCHEMA_NAME = "product_extraction"
DEFAULT_GROUP = "tech"
CURRENCIES = ("USD", "EUR", "GBP", "ALL")
CONFIDENCE_LEVELS = ("high", "high-medium", "medium", "medium-low", "low")
PRODUCT_REQUIRED_FIELDS = (
    "brand", "name", "type", "categories", "price", "discount_price",
    "currency", "condition", "attributes", "product_details", "source", "confidence",
)


@dataclass(frozen=True)
class GroupConfig:
    product_types: Tuple[str, ...]
    condition_enum: Tuple[str, ...]


GROUP_CONFIGS: Dict[str, GroupConfig] = {
    "tech": GroupConfig(
        product_types=(
            "phone", "laptop", "computer", "monitor", "tablet", "smartwatch",
            "headphones", "camera", "gaming_console", "general_electronics",
        ),
        condition_enum=("new", "used", "refurbished", "unknown"),
    ),
    "car": GroupConfig(
        product_types=(
            "car", "motorcycle", "scooter", "truck", "van", "suv", "bicycle",
            "electric_vehicle",
        ),
        condition_enum=("new", "used", "certified_pre_owned", "salvage", "unknown"),
    ),
}


@dataclass(frozen=True)
class AttributeDefinition:
    """One key of the ``attributes`` object, taken from a StructureOutput row."""

    key: str
    description: str
    required: bool = False


def resolve_group(group: Optional[str]) -> str:
    """
    Map ``group`` onto a supported domain group.

    Unsupported values fall back to DEFAULT_GROUP, and the fallback is logged.
    """
    if group in GROUP_CONFIGS:
        return group
    logger.warning(
        "Unknown domain group %r, falling back to %r", group, DEFAULT_GROUP
    )
    return DEFAULT_GROUP


@dataclass(frozen=True)
class ExtractionSchema:
    """
    Immutable extraction schema for one group and one set of source labels.

    The schema body is held as canonical JSON text; ``as_dict()`` returns a
    fresh copy each time.
    """

    group: str
    source_labels: Tuple[str, ...]
    attribute_keys: Tuple[str, ...]
    required_attribute_keys: Tuple[str, ...]
    schema_json: str

    def as_dict(self) -> Dict[str, Any]:
        return json.loads(self.schema_json)

    def response_format(self) -> Dict[str, Any]:
        """Schema wrapped as an OpenAI-style strict ``response_format``."""
        return {
            "type": "json_schema",
            "json_schema": {
                "name": SCHEMA_NAME,
                "strict": True,
                "schema": self.as_dict(),
            },
        }

    @property
    def product_types(self) -> Tuple[str, ...]:
        return GROUP_CONFIGS[self.group].product_types


class SchemaBuilder:
    """Builds ExtractionSchema objects from attribute definitions per group."""

    def __init__(self, definitions: Mapping[str, Sequence[AttributeDefinition]]):
        self.definitions = definitions

    def build(self, group: Optional[str], source_labels: Sequence[str]) -> ExtractionSchema:
        group = resolve_group(group)
        config = GROUP_CONFIGS[group]
        labels = tuple(source_labels) or ("image_1",)

        properties, required = self._attribute_properties(self.definitions.get(group, ()))
        attributes_schema = {
            "type": "object",
            "properties": properties,
            "required": list(required),
            "additionalProperties": False,
        }

        schema = {
            "type": "object",
            "properties": {
                "has_products": {
                    "type": "boolean",
                    "description": (
                        "True if sellable products with an identifiable BRAND and MODEL "
                        "are found. Price is optional - products without prices are still valid."
                    ),
                },
                "post_type": {
                    "type": "string",
                    "enum": list(config.product_types),
                    "description": "Primary type of product in the post",
                },
                "products": {
                    "type": "array",
                    "description": (
                        "Array of products extracted. Include products that have identifiable "
                        "BRAND and MODEL. Price is optional - use 0 if no price is mentioned."
                    ),
                    "items": self._product_schema(config, attributes_schema, labels),
                },
            },
            "required": ["has_products", "post_type", "products"],
            "additionalProperties": False,
        }

        return ExtractionSchema(
            group=group,
            source_labels=labels,
            attribute_keys=tuple(properties),
            required_attribute_keys=required,
            schema_json=json.dumps(schema),
        )

    @staticmethod
    def _attribute_properties(
        definitions: Iterable[AttributeDefinition],
    ) -> Tuple[Dict[str, Dict[str, str]], Tuple[str, ...]]:
        properties: Dict[str, Dict[str, str]] = {}
        required = []
        for definition in definitions:
            # First occurrence of a key wins
            if definition.key in properties:
                continue
            properties[definition.key] = {
                "type": "string",
                "description": definition.description,
            }
            if definition.required and definition.key not in required:
                required.append(definition.key)
        return properties, tuple(required)

    @staticmethod
    def _product_schema(
        config: GroupConfig,
        attributes_schema: Dict[str, Any],
        labels: Tuple[str, ...],
    ) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "brand": {
                    "type": "string",
                    "description": "Product manufacturer or brand name",
                },
                "name": {
                    "type": "string",
                    "description": "Product model name",
                },
                "type": {
                    "type": "string",
                    "enum": list(config.product_types),
                    "description": "Specific product category",
                },
                "categories": {
                    "type": "array",
                    "items": {"type": "string"},
                    "maxItems": 2,
                    "description": "E-commerce categories. Maximum 2 most relevant categories only.",
                },
                "price": {
                    "type": "number",
                    "description": (
                        "ORIGINAL/REGULAR price (the HIGHER value). Often shown crossed out when "
                        "discounted. Use 0 if no price mentioned. When two prices exist, this is "
                        "ALWAYS the higher one."
                    ),
                },
                "discount_price": {
                    "type": "number",
                    "description": (
                        "SALE/DISCOUNTED price (the LOWER value). MUST be lower than price field. "
                        "Use 0 if no discount exists. When only one price is shown, put it in "
                        "price and use 0 here."
                    ),
                },
                "currency": {
                    "type": "string",
                    "enum": list(CURRENCIES),
                    "description": "Price currency (ISO code: USD, EUR, GBP, ALL=Albanian Lek)",
                },
                "condition": {
                    "type": "string",
                    "enum": list(config.condition_enum),
                    "description": "Product condition state",
                },
                "attributes": attributes_schema,
                "product_details": {
                    "type": "string",
                    "description": (
                        "Additional details, features, or notable information in the "
                        "language of the post"
                    ),
                },
                "source": {
                    "type": "array",
                    "items": {"type": "string", "enum": list(labels)},
                    "description": "Image references where this product appears",
                },
                "confidence": {
                    "type": "string",
                    "enum": list(CONFIDENCE_LEVELS),
                    "description": "Extraction confidence level",
                },
            },
            "required": list(PRODUCT_REQUIRED_FIELDS),
            "additionalProperties": False,
        }


# ============================================================
# Loading definitions from the database
# ============================================================

CACHE_TTL = 300  # 5 minutes
CACHE_KEY = "schema_builder:attribute_definitions"


def load_attribute_definitions() -> Dict[str, Tuple[AttributeDefinition, ...]]:
    """
    Load attribute definitions for every group from StructureOutput rows.

    Rows are read in primary key order so repeated builds are identical.
    Cached for CACHE_TTL seconds; StructureOutput changes clear the cache.
    """
    definitions = cache.get(CACHE_KEY)
    if definitions is not None:
        return definitions

    grouped: Dict[str, list] = {}
    rows = (
        StructureOutput.objects.exclude(parent_key__isnull=True)
        .order_by("id")
        .values_list("parent_key", "key", "description", "required")
    )
    for parent_key, key, description, required in rows:
        grouped.setdefault(parent_key, []).append(
            AttributeDefinition(key=key, description=description, required=required)
        )

    definitions = {group: tuple(items) for group, items in grouped.items()}
    cache.set(CACHE_KEY, definitions, CACHE_TTL)
    return definitions


def invalidate_attribute_definitions() -> None:
    cache.delete(CACHE_KEY)


def build_schema(group: Optional[str], source_labels: Sequence[str]) -> ExtractionSchema:
    """Build the extraction schema for ``group`` from current StructureOutput rows."""
    return SchemaBuilder(load_attribute_definitions()).build(group, source_labels)
