"""
Reconciler: turns an extraction result into catalog rows.

For one post and its ExtractionResult it:

- applies the confidence gate (only "high" and "high-medium" products are kept)
- creates Products with denormalized seller/group/media fields
- resolves attribute values through the taxonomy store and links them to
  the product and post with an ``is_temp`` snapshot
- resolves categories (vector search, then name/slug/plural fallbacks)
- marks the post processed

All writes for a post happen in one transaction, with search index sync
deferred until after it.
"""

import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set, Tuple

from django.core.files.storage import default_storage
from django.db import transaction

from catalog.models import (
    AttributeValue,
    AttributeValueAssociation,
    Media,
    Post,
    Product,
    ProductCategory,
    StructureOutput,
)
from catalog.services.extractor import ExtractionResult
from catalog.services.schema_builder import resolve_group
from catalog.services.search_index import suppress_search_sync
from catalog.services.taxonomy import TaxonomyStore

logger = logging.getLogger(__name__)

ACCEPTED_CONFIDENCE = frozenset({"high", "high-medium"})

PLACEHOLDER_VALUES = frozenset({
    "unknown", "n/a", "na", "none", "not available", "not specified",
    "unspecified", "null", "undefined", "-", "--", "---",
})

# Top-level product fields labeled as attributes: product field -> structure output key
TOP_LEVEL_ATTRIBUTES = {
    "brand": "brand",
    "name": "model",
    "condition": "condition",
    "currency": "currency",
}

REASON_NO_PRODUCTS = "No products detected"
REASON_LOW_CONFIDENCE = "All products below confidence threshold"


@dataclass
class ProductSummary:
    product_id: int
    name: str
    type: str
    confidence: str
    media_ids: List[str] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)
    categories: List[str] = field(default_factory=list)


@dataclass
class ProcessingOutcome:
    """Result of processing one post. ``success=False`` with a reason is a skip, not an error."""

    success: bool
    post_id: int
    shortcode: str
    group: str = ""
    post_type: Optional[str] = None
    reason: Optional[str] = None
    products_created: int = 0
    products_skipped_low_confidence: int = 0
    products: List[ProductSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_valid_attribute_value(key: str, value: Any) -> bool:
    """
    Reject values that carry no information.

    Empty/whitespace, placeholder strings ("unknown", "n/a", ...) in any case,
    non-currency values shorter than 2 characters, and values longer than a
    taxonomy value can hold are rejected.
    """
    if value is None or isinstance(value, (dict, list, bool)):
        return False
    text = str(value).strip()
    if not text:
        return False
    if text.lower() in PLACEHOLDER_VALUES:
        return False
    if key != "currency" and len(text) < 2:
        return False
    if len(text) > AttributeValue.MAX_LENGTH:
        return False
    return True


def _safe_decimal(value: Any) -> Decimal:
    """Convert a price to Decimal; anything unusable or negative becomes 0."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        result = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not result.is_finite() or result < 0:
        return Decimal("0")
    return result.quantize(Decimal("0.01"))


def _safe_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class Reconciler:
    """Persists extraction results against the taxonomy."""

    def __init__(self, taxonomy: Optional[TaxonomyStore] = None):
        self.taxonomy = taxonomy or TaxonomyStore()
        self._attribute_ids: Dict[Tuple[str, str], Optional[int]] = {}

    def reconcile(self, post: Post, extraction: ExtractionResult) -> ProcessingOutcome:
        group = resolve_group(extraction.group or post.group)
        self._attribute_ids = {}

        with suppress_search_sync():
            with transaction.atomic():
                outcome = self._reconcile(post, extraction, group)

        logger.info(
            "Reconciled post %s (%s): created=%d low_confidence=%d reason=%s",
            post.shortcode, group, outcome.products_created,
            outcome.products_skipped_low_confidence, outcome.reason,
        )
        return outcome

    def _reconcile(self, post: Post, extraction: ExtractionResult, group: str) -> ProcessingOutcome:
        outcome = ProcessingOutcome(
            success=False,
            post_id=post.pk,
            shortcode=post.shortcode,
            group=group,
            post_type=extraction.post_type,
        )

        # Extraction is authoritative for this run: replace, never merge
        AttributeValueAssociation.objects.filter(post=post).delete()

        if not extraction.has_products or not extraction.products:
            post.processed_structure = True
            post.save(update_fields=["processed_structure", "updated_at"])
            outcome.reason = REASON_NO_PRODUCTS
            return outcome

        for product_data in extraction.products:
            confidence = _safe_str(product_data.get("confidence")).lower()
            if confidence not in ACCEPTED_CONFIDENCE:
                outcome.products_skipped_low_confidence += 1
                logger.info(
                    "Skipping product '%s' from post %s: confidence '%s'",
                    _safe_str(product_data.get("name")), post.shortcode, confidence or "missing",
                )
                continue

            product, media_ids = self._create_product(post, product_data, extraction, group)
            summary = ProductSummary(
                product_id=product.pk,
                name=product.name,
                type=product.type,
                confidence=confidence,
                media_ids=media_ids,
            )
            summary.attributes = self._label_attributes(post, product, product_data, group)
            summary.categories = self._assign_categories(product, product_data.get("categories"))
            outcome.products.append(summary)
            outcome.products_created += 1

        post.group = group
        post.used_for = extraction.post_type or post.used_for
        post.llm_categories = self._all_categories(extraction.products)
        post.processed_structure = True
        post.save(update_fields=["group", "used_for", "llm_categories", "processed_structure", "updated_at"])

        if outcome.products_created:
            outcome.success = True
        else:
            outcome.reason = REASON_LOW_CONFIDENCE
        return outcome

    # ============================================================
    # Products
    # ============================================================

    def _create_product(
        self,
        post: Post,
        product_data: Dict[str, Any],
        extraction: ExtractionResult,
        group: str,
    ) -> Tuple[Product, List[str]]:
        media_ids = extraction.media_ids_for(product_data.get("source") or [])
        if not media_ids:
            media_ids = [m for m in extraction.image_map.values() if m][:1]

        primary_image_url, thumbnail_url = self._image_urls(post, media_ids)
        name = f"{_safe_str(product_data.get('brand'))} {_safe_str(product_data.get('name'))}".strip()
        profile = post.profile

        product = Product.objects.create(
            name=name[:255],
            type=_safe_str(product_data.get("type"))[:50] or "general_product",
            price=_safe_decimal(product_data.get("price")),
            discount_price=_safe_decimal(product_data.get("discount_price")),
            currency=_safe_str(product_data.get("currency")).upper()[:3] or "ALL",
            description=_safe_str(product_data.get("product_details")),
            instagram_media_ids="_".join(media_ids),
            group=group,
            post=post,
            profile=profile,
            seller_username=profile.username if profile else "",
            published_at=post.published_at,
            media_count=max(1, len(media_ids)),
            primary_image_url=primary_image_url,
            thumbnail_url=thumbnail_url,
        )
        return product, media_ids

    @staticmethod
    def _image_urls(post: Post, media_ids: List[str]) -> Tuple[str, str]:
        """Prefer the stored copy of the first source image; fall back to the post's CDN URLs."""
        if media_ids:
            media = (
                Media.objects.filter(post=post, media_id=media_ids[0])
                .order_by("role", "id")
                .first()
            )
            if media and media.media_path and default_storage.exists(media.media_path):
                url = default_storage.url(media.media_path)
                return url, url
        return post.display_url or "", post.thumbnail_url or ""

    @staticmethod
    def _all_categories(products: List[Dict[str, Any]]) -> List[str]:
        seen = []
        for product_data in products:
            for name in product_data.get("categories") or []:
                name = _safe_str(name)
                if name and name not in seen:
                    seen.append(name)
        return seen

    # ============================================================
    # Attributes
    # ============================================================

    def _label_attributes(
        self, post: Post, product: Product, product_data: Dict[str, Any], group: str
    ) -> Dict[str, str]:
        candidates = [
            (structure_key, product_data.get(field_name))
            for field_name, structure_key in TOP_LEVEL_ATTRIBUTES.items()
        ]
        attributes = product_data.get("attributes") or {}
        if isinstance(attributes, dict):
            candidates.extend(attributes.items())

        assigned: Dict[str, str] = {}
        resolved: Set[int] = set()
        for key, value in candidates:
            if not is_valid_attribute_value(key, value):
                continue
            attribute_id = self._linked_attribute_id(key, group)
            if attribute_id is None:
                continue

            text = str(value).strip()
            existing = self.taxonomy.find_value_by_normalized_text(attribute_id, text)
            if existing is not None and existing.pk in resolved:
                continue

            attribute_value, _created = self.taxonomy.create_or_reuse_value(attribute_id, text)
            resolved.add(attribute_value.pk)
            self._associate(attribute_value, post, product)
            self.taxonomy.promote_if_eligible(attribute_value)
            assigned[key] = attribute_value.value
        return assigned

    def _linked_attribute_id(self, key: str, group: str) -> Optional[int]:
        cache_key = (key, group)
        if cache_key not in self._attribute_ids:
            self._attribute_ids[cache_key] = (
                StructureOutput.objects.filter(
                    key=key, parent_key=group, attribute__isnull=False
                )
                .order_by("id")
                .values_list("attribute_id", flat=True)
                .first()
            )
        return self._attribute_ids[cache_key]

    @staticmethod
    def _associate(value: AttributeValue, post: Post, product: Product) -> None:
        AttributeValueAssociation.objects.update_or_create(
            value=value,
            post=post,
            product=product,
            defaults={"is_temp": value.is_temp},
        )

    # ============================================================
    # Categories
    # ============================================================

    def _assign_categories(self, product: Product, names: Any) -> List[str]:
        if not isinstance(names, list):
            return []

        assigned = []
        seen_ids: Set[int] = set()
        for name in names:
            name = _safe_str(name)
            if not name:
                continue
            category = self.taxonomy.find_category_by_name(name)
            if category is None or category.pk in seen_ids:
                continue
            seen_ids.add(category.pk)

            ProductCategory.objects.get_or_create(product=product, category=category)
            self.taxonomy.increment_score(category)
            self.taxonomy.promote_if_eligible(category)
            assigned.append(category.name)

            if product.primary_category_id is None:
                product.primary_category = category
                product.save(update_fields=["primary_category", "updated_at"])
        return assigned
