"""
Django signals for the catalog application.

Active Signals:
- Category, AttributeValue, Product save/delete -> search index sync
- StructureOutput save/delete -> schema definition cache invalidation
"""

from django.conf import settings
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from catalog.models import AttributeValue, Category, Product, StructureOutput
from catalog.services.schema_builder import invalidate_attribute_definitions
from catalog.services.search_index import schedule_search_sync

SEARCH_SYNC_MODELS = (Category, AttributeValue, Product)


def _sync_enabled() -> bool:
    return getattr(settings, "SEARCH_SYNC_ENABLED", True)


# ============================================================
# Search index sync
# ============================================================

def sync_saved_document(sender, instance, raw=False, **kwargs):
    """Queue the saved row for indexing (deferred while sync is suppressed)."""
    if raw or not _sync_enabled():
        return
    schedule_search_sync(sender._meta.label_lower, instance.pk)


def sync_deleted_document(sender, instance, **kwargs):
    """Queue the deleted row; the sync task removes ids whose row is gone."""
    if not _sync_enabled():
        return
    schedule_search_sync(sender._meta.label_lower, instance.pk)


for _model in SEARCH_SYNC_MODELS:
    post_save.connect(
        sync_saved_document, sender=_model, dispatch_uid=f"search_sync_save_{_model.__name__}"
    )
    post_delete.connect(
        sync_deleted_document, sender=_model, dispatch_uid=f"search_sync_delete_{_model.__name__}"
    )


# ============================================================
# Schema definition cache
# ============================================================

@receiver(post_save, sender=StructureOutput)
def structure_output_saved(sender, instance, **kwargs):
    invalidate_attribute_definitions()


@receiver(post_delete, sender=StructureOutput)
def structure_output_deleted(sender, instance, **kwargs):
    invalidate_attribute_definitions()
