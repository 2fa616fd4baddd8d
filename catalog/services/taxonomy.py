"""
Taxonomy store: attribute values and categories with score/is_temp.

Values and categories start temporary (``is_temp=True``). Every reuse bumps
their ``score`` with an atomic UPDATE; once the score passes the promotion
threshold they are made permanent by a conditional UPDATE that can only
ever flip ``is_temp`` from True to False.

Category lookup tries the semantic search index first and then falls back
to deterministic database matches, so resolution keeps working when the
index is down or empty.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Model, Q
from django.utils.text import slugify

from catalog.models import AttributeValue, Category
from catalog.services.search_index import (
    SearchIndexError,
    TypesenseClient,
    get_search_client,
    schedule_search_sync,
)

logger = logging.getLogger(__name__)

PROMOTION_THRESHOLD = 3
VECTOR_DISTANCE_THRESHOLD = 0.30


class TaxonomyStore:
    """Lookup-or-create, scoring and promotion for taxonomy entries."""

    def __init__(
        self,
        search_client: Optional[TypesenseClient] = None,
        promotion_threshold: Optional[int] = None,
        distance_threshold: Optional[float] = None,
    ):
        self._search_client = search_client
        self.promotion_threshold = (
            promotion_threshold
            if promotion_threshold is not None
            else getattr(settings, "TAXONOMY_PROMOTION_THRESHOLD", PROMOTION_THRESHOLD)
        )
        self.distance_threshold = (
            distance_threshold
            if distance_threshold is not None
            else getattr(settings, "CATEGORY_VECTOR_DISTANCE_THRESHOLD", VECTOR_DISTANCE_THRESHOLD)
        )

    @property
    def search_client(self) -> TypesenseClient:
        if self._search_client is None:
            self._search_client = get_search_client()
        return self._search_client

    # ------------------------------------------------------------------
    # Attribute values
    # ------------------------------------------------------------------

    def find_value_by_normalized_text(self, attribute_id: int, text: str) -> Optional[AttributeValue]:
        normalized = AttributeValue.normalize(text)
        if not normalized:
            return None
        return AttributeValue.objects.filter(attribute_id=attribute_id, ai_value=normalized).first()

    def create_or_reuse_value(self, attribute_id: int, text: str) -> Tuple[AttributeValue, bool]:
        """
        Resolve ``text`` to a value of ``attribute_id``, creating it if needed.

        A reused value has its score incremented; a new value starts with
        ``score=1, is_temp=True``.

        Returns:
            (value, created)
        """
        normalized = AttributeValue.normalize(text)
        if not normalized:
            raise ValueError("Attribute value text is empty")
        if len(normalized) > AttributeValue.MAX_LENGTH:
            raise ValueError(f"Attribute value exceeds {AttributeValue.MAX_LENGTH} characters")

        with transaction.atomic():
            value = (
                AttributeValue.objects.select_for_update()
                .filter(attribute_id=attribute_id, ai_value=normalized)
                .first()
            )
            if value is not None:
                self.increment_score(value)
                return value, False

            try:
                with transaction.atomic():
                    value = AttributeValue.objects.create(
                        attribute_id=attribute_id,
                        value=text.strip(),
                        ai_value=normalized,
                        score=1,
                        is_temp=True,
                    )
                return value, True
            except IntegrityError:
                # Another worker created it between our read and insert
                value = AttributeValue.objects.select_for_update().get(
                    attribute_id=attribute_id, ai_value=normalized
                )
                self.increment_score(value)
                return value, False

    # ------------------------------------------------------------------
    # Scoring and promotion (values and categories)
    # ------------------------------------------------------------------

    def increment_score(self, entry: Model, amount: int = 1) -> Model:
        type(entry).objects.filter(pk=entry.pk).update(score=F("score") + amount)
        entry.refresh_from_db(fields=["score", "is_temp"])
        schedule_search_sync(entry._meta.label_lower, entry.pk)
        return entry

    def promote_if_eligible(self, entry: Model) -> bool:
        """
        Make ``entry`` permanent when it is temp and its score passed the threshold.

        Idempotent; never turns a permanent entry back into a temp one.
        """
        promoted = (
            type(entry).objects.filter(
                pk=entry.pk, is_temp=True, score__gt=self.promotion_threshold
            ).update(is_temp=False)
        )
        if promoted:
            entry.is_temp = False
            logger.info(
                "Promoted %s %s to permanent (score %s)",
                entry._meta.model_name, entry.pk, entry.score,
            )
            schedule_search_sync(entry._meta.label_lower, entry.pk)
        return bool(promoted)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def find_category_by_name(self, name: str) -> Optional[Category]:
        """
        Resolve a free-text category name to an existing Category.

        Order: vector search (distance <= threshold), exact case-insensitive
        name, slug, then naive singular/plural. Returns None when all miss.
        """
        lower_name = (name or "").strip().lower()
        if not lower_name:
            return None

        category = self._find_category_by_vector(lower_name)
        if category:
            return category

        category = Category.objects.filter(name__iexact=lower_name).order_by("id").first()
        if category:
            return category

        category = Category.objects.filter(slug=slugify(lower_name)).first()
        if category:
            return category

        variants = Q(name__iexact=lower_name + "s")
        singular = lower_name.rstrip("s")
        if singular:
            variants |= Q(name__iexact=singular)
        category = Category.objects.filter(variants).order_by("id").first()
        if category:
            return category

        logger.debug("No category match for '%s'", name)
        return None

    def _find_category_by_vector(self, name: str) -> Optional[Category]:
        try:
            hits = self.search_client.search_categories(name, k=1)
        except SearchIndexError as e:
            logger.warning("Category search failed for '%s': %s", name, e)
            return None

        if not hits:
            return None
        hit = hits[0]
        distance = hit.distance if hit.distance is not None else 1.0
        if distance > self.distance_threshold:
            return None

        try:
            category_id = int(hit.document.get("id"))
        except (TypeError, ValueError):
            return None
        return Category.objects.filter(pk=category_id).first()


# ============================================================
# Category tree
# ============================================================


def build_category_tree(group: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Build the permanent category forest.

    With ``group`` set, the forest starts at that group's root category
    (``settings.CATEGORY_GROUP_ROOTS``); otherwise at every parentless
    category. Siblings are ordered by score, highest first.

    Categories are loaded in one query and linked through a parent index;
    the traversal is iterative and visits each node at most once, so
    malformed parent cycles cannot recurse forever.
    """
    rows = list(
        Category.objects.filter(is_temp=False)
        .annotate(product_count=Count("product_links"))
        .order_by("-score", "id")
        .values("id", "name", "slug", "description", "parent_id", "product_count")
    )
    by_id = {row["id"]: row for row in rows}
    children_index: Dict[Optional[int], List[int]] = {}
    for row in rows:
        children_index.setdefault(row["parent_id"], []).append(row["id"])

    roots = getattr(settings, "CATEGORY_GROUP_ROOTS", {})
    if group and group in roots:
        root_ids = [roots[group]]
    else:
        root_ids = [row["id"] for row in rows if row["parent_id"] is None or row["parent_id"] not in by_id]

    def make_node(category_id: int) -> Dict[str, Any]:
        row = by_id[category_id]
        return {
            "id": row["id"],
            "name": row["name"],
            "slug": row["slug"],
            "description": row["description"],
            "product_count": row["product_count"],
            "children": [],
        }

    forest = []
    visited = set()
    for root_id in root_ids:
        if root_id not in by_id or root_id in visited:
            continue
        visited.add(root_id)
        root = make_node(root_id)
        forest.append(root)

        stack = [root]
        while stack:
            node = stack.pop()
            for child_id in children_index.get(node["id"], []):
                if child_id in visited:
                    logger.warning("Category %s reached twice while building tree", child_id)
                    continue
                visited.add(child_id)
                child = make_node(child_id)
                node["children"].append(child)
                stack.append(child)

    return forest
