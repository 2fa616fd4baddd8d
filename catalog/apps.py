"""
Catalog application configuration.
"""

from django.apps import AppConfig


class CatalogConfig(AppConfig):
    """Configuration for the catalog Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "catalog"
    verbose_name = "Catalog Pipeline"

    def ready(self):
        """
        Register signal handlers:
        - search index sync for Category, AttributeValue and Product
        - schema definition cache invalidation for StructureOutput
        """
        from catalog import signals  # noqa: F401
